"""
storefront/auth/models.py
-------------------------
Registered users. The cart only needs a stable user id; the rest is
here so login, admin checks and voucher usage reports have something
to show.
"""
import enum
from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from storefront import db


class RoleEnum(enum.Enum):
    admin    = "admin"        # manages vouchers
    customer = "customer"     # shops


class User(db.Model):
    """A shopper or a back-office voucher manager."""
    __tablename__ = 'users'

    id            = db.Column(db.Integer, primary_key=True)
    name          = db.Column(db.String(120), nullable=False)
    username      = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email         = db.Column(db.String(255), unique=True, nullable=True)
    password_hash = db.Column(db.String(256), nullable=False)
    role          = db.Column(db.Enum(RoleEnum), nullable=False, default=RoleEnum.customer)
    is_active     = db.Column(db.Boolean, nullable=False, default=True)
    last_login_at = db.Column(db.DateTime, nullable=True)
    created_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def set_password(self, plain_password: str) -> None:
        self.password_hash = generate_password_hash(plain_password)

    def check_password(self, plain_password: str) -> bool:
        return check_password_hash(self.password_hash, plain_password)

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.admin

    def to_dict(self) -> dict:
        return {
            'id':       self.id,
            'name':     self.name,
            'username': self.username,
            'email':    self.email,
            'role':     self.role.value,
        }

    def __repr__(self) -> str:
        return f"<User {self.username!r} role={self.role.value!r}>"
