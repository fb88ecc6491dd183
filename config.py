import os

class Config:
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev_secret_key')
    SQLALCHEMY_DATABASE_URI = os.getenv('DATABASE_URI', 'sqlite:///inventory.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

    # QR labels: codes point back at /qrcode/<part_id> on this deployment
    QR_BASE_URL = os.getenv('QR_BASE_URL', 'http://localhost:5000')
    QR_BOX_SIZE = int(os.getenv('QR_BOX_SIZE', '10'))
    QR_BORDER = int(os.getenv('QR_BORDER', '2'))

    # Board builds
    BUILD_TIMEOUT_SECONDS = float(os.getenv('BUILD_TIMEOUT_SECONDS', '5'))
    BUILD_MAX_RETRIES = int(os.getenv('BUILD_MAX_RETRIES', '3'))
    BUILD_RETRY_BACKOFF = float(os.getenv('BUILD_RETRY_BACKOFF', '0.1'))
    BUILD_ISOLATION_LEVEL = os.getenv('BUILD_ISOLATION_LEVEL', 'SERIALIZABLE')

    LOW_STOCK_DEFAULT_MIN = int(os.getenv('LOW_STOCK_DEFAULT_MIN', '5'))
