import sys

from werkzeug.security import generate_password_hash

from app import create_app, db
from models import User
from routes.auth import validate_new_password

app = create_app()


def reset_admin_password(email=None, password=None):
    """Resets the admin password, creating the admin account when it is missing."""
    with app.app_context():
        email = (email or app.config['SEED_ADMIN_EMAIL']).lower()
        password = password or app.config['SEED_ADMIN_PASSWORD']
        validate_new_password(password)

        user = User.query.filter_by(email=email).first()
        if user:
            print(f"Found admin user {email}.")
            user.password_hash = generate_password_hash(password)
            user.is_active = True
            db.session.commit()
            print("Password reset.")
        else:
            print(f"Admin user {email} not found! Creating one...")
            new_admin = User(
                email=email,
                first_name='System',
                last_name='Administrator',
                password_hash=generate_password_hash(password),
                role='ADMIN'
            )
            db.session.add(new_admin)
            db.session.commit()
            print("Created admin user.")


if __name__ == '__main__':
    reset_admin_password(*sys.argv[1:3])
