from app import create_app
from errors import InvalidInput
from modules.users.accounts import create_user as create_account

app = create_app()

def create_user(name, email, password, role):
    with app.app_context():
        try:
            user = create_account(name, email, password, role)
        except InvalidInput as err:
            print(f"User not created: {err.message}")
            return
        print(f"Created user: {user.email} (role: {user.role})")

if __name__ == '__main__':
    import argparse

    parser = argparse.ArgumentParser(description='Create a new user.')
    parser.add_argument('name', help='Display name')
    parser.add_argument('email', help='Login email')
    parser.add_argument('password', help='Password')
    parser.add_argument('role', choices=['admin', 'member'], help='User role')

    args = parser.parse_args()
    create_user(args.name, args.email, args.password, args.role)
