"""
Two-factor authentication (TOTP) operations.
"""
from typing import Any, Dict

import pyotp
from sqlalchemy.orm import Session

from config.settings import settings
from database import User
from .exceptions import ValidationError
from .passwords import verify_password
from .sink import AuditAction, SideEffectSink


def setup_two_factor(db: Session, user: User) -> Dict[str, Any]:
    """
    Generate a pending secret. 2FA stays off until `verify_two_factor`.
    """
    if user.two_factor_enabled:
        raise ValidationError("La autenticación de dos factores ya está activada")
    secret = pyotp.random_base32()
    user.two_factor_secret_temp = secret
    db.commit()
    uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=settings.totp_issuer)
    return {"secret": secret, "otpauth_url": uri}


def verify_two_factor(db: Session, user: User, code: str, ip_address: str = None,
                      user_agent: str = None, sink: SideEffectSink = None) -> None:
    """
    Confirm the pending secret with a code and enable 2FA.

    Raises:
        ValidationError: no pending setup or wrong code
    """
    sink = sink or SideEffectSink()
    secret = user.two_factor_secret_temp
    if not secret:
        raise ValidationError("No hay una configuración de 2FA pendiente")
    if not code or not pyotp.TOTP(secret).verify(str(code), valid_window=1):
        sink.audit(
            AuditAction.TWO_FACTOR_VERIFICATION_FAILED,
            user_id=user.id,
            details={"message": "Intento fallido de verificación de código 2FA"},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise ValidationError("Código de verificación incorrecto", "code")

    user.two_factor_enabled = True
    user.two_factor_secret = secret
    user.two_factor_secret_temp = None
    db.commit()

    sink.audit(AuditAction.TWO_FACTOR_ENABLED, user_id=user.id,
               ip_address=ip_address, user_agent=user_agent)
    sink.security_alert(user.id, "2FA activada",
                        "La autenticación de dos factores fue activada en tu cuenta.")


def disable_two_factor(db: Session, user: User, password: str, ip_address: str = None,
                       user_agent: str = None, sink: SideEffectSink = None) -> None:
    """
    Raises:
        ValidationError: 2FA not enabled or wrong password
    """
    if not user.two_factor_enabled:
        raise ValidationError("La autenticación de dos factores no está activada")
    if not verify_password(password, user.password_hash):
        raise ValidationError("Contraseña incorrecta", "password")

    user.two_factor_enabled = False
    user.two_factor_secret = None
    user.two_factor_secret_temp = None
    db.commit()

    sink = sink or SideEffectSink()
    sink.audit(AuditAction.TWO_FACTOR_DISABLED, user_id=user.id,
               ip_address=ip_address, user_agent=user_agent)
    sink.security_alert(user.id, "2FA desactivada",
                        "La autenticación de dos factores fue desactivada en tu cuenta.")


def two_factor_status(user: User) -> Dict[str, Any]:
    return {
        "enabled": bool(user.two_factor_enabled),
        "pending_setup": bool(user.two_factor_secret_temp),
    }
