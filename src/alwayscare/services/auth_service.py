from src.alwayscare.core.security import hash_password, verify_password, issue_owner_token
from src.alwayscare.domain.contracts.uow import UoW

class AuthService:
    def __init__(self, uow: UoW):
        self.uow = uow

    def register(self, email: str, password: str) -> str:
        email = email.strip().lower()
        if not email or "@" not in email:
            raise ValueError("A valid email is required.")
        if len(password) < 6:
            raise ValueError("Password must be at least 6 characters.")

        try:
            if self.uow.users.get_by_email(email):
                raise ValueError("User already exists.")

            user = self.uow.users.create(email=email, password_hash=hash_password(password))
            self.uow.commit()
        except Exception:
            self.uow.rollback()
            raise

        return issue_owner_token(user.id, user.email)

    def login(self, email: str, password: str) -> str:
        email = email.strip().lower()
        creds = self.uow.users.get_auth_credentials(email)
        if not creds or not verify_password(password, creds.password_hash):
            raise ValueError("Invalid credentials.")

        return issue_owner_token(creds.user_id, email)
