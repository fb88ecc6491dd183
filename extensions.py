from flask_sqlalchemy import SQLAlchemy
from flask_login import LoginManager

# Extensions are created unbound and attached in create_app()

# Database
db = SQLAlchemy()

# Sessions and the current user
login_manager = LoginManager()
