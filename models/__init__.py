from .db import db
from .account import Account
from .session import Session
from .login_attempt import LoginAttempt
from .security_event import SecurityEvent
from .csrf_token import CSRFToken
from .password_reset_token import PasswordResetToken
from .rate_limit_event import RateLimitEvent
from .blocked_ip import BlockedIp
