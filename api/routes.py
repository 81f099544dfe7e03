"""
API routes for accounts and administration.
"""
from datetime import datetime
from typing import Optional, Tuple

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from config.settings import settings
from database import get_db, User, UserSession
from services import accounts, admin, site_config, subjects, two_factor
from services.sink import SideEffectSink
from .deps import (
    client_info,
    get_current_session,
    get_current_user,
    get_sink,
    require_admin,
    require_student_manager,
)
from .schemas import (
    ok,
    SuccessResponse,
    RegisterRequest,
    LoginRequest,
    ChangePasswordRequest,
    ProfileUpdateRequest,
    UpdateYearRequest,
    TwoFactorCodeRequest,
    TwoFactorDisableRequest,
    CreateUserRequest,
    UpdateUserRequest,
    RejectStudentRequest,
    SubjectCreateRequest,
    SubjectUpdateRequest,
    AssignStudentsRequest,
    TeacherEmailRequest,
    MaintenanceRequest,
)


# Router for authentication endpoints
auth_router = APIRouter(prefix="/api/auth", tags=["Auth"])

# Router for the caller's own account
user_router = APIRouter(prefix="/api/user", tags=["User"])

# Router for administration endpoints
admin_router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ============== Auth Endpoints ==============

@auth_router.post("/register", response_model=SuccessResponse, status_code=201)
def register(request: RegisterRequest, db: Session = Depends(get_db)):
    """Self-service registration. Students start pending approval."""
    user = accounts.register_user(db, request.email, request.password, request.name,
                                  year=request.year, division=request.division)
    if user["role"] == "student":
        message = "Registro exitoso. Tu cuenta está pendiente de aprobación."
    else:
        message = "Registro exitoso."
    return ok(user, message)


@auth_router.post("/login", response_model=SuccessResponse)
def login(body: LoginRequest, request: Request, response: Response,
          db: Session = Depends(get_db)):
    """
    Verify credentials and open a device session.

    Login failures must be recorded even though the request fails, so the
    sink writes immediately here instead of after the response.
    """
    ip_address, user_agent = client_info(request)
    token, user = accounts.login(db, body.email, body.password, totp_code=body.totp_code,
                                 ip_address=ip_address, user_agent=user_agent,
                                 sink=SideEffectSink())
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_max_age_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )
    return ok({"user": user, "token": token}, "Inicio de sesión exitoso")


@auth_router.post("/logout", response_model=SuccessResponse)
def logout(response: Response,
           current: Tuple[User, UserSession] = Depends(get_current_session),
           db: Session = Depends(get_db),
           sink: SideEffectSink = Depends(get_sink)):
    user, session = current
    accounts.logout(db, user, session, sink=sink)
    response.delete_cookie(settings.session_cookie_name)
    return ok(message="Sesión cerrada")


@auth_router.get("/account-status", response_model=SuccessResponse)
def account_status(user: User = Depends(get_current_user)):
    return ok(accounts.account_status(user))


@auth_router.post("/2fa/setup", response_model=SuccessResponse)
def two_factor_setup(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(two_factor.setup_two_factor(db, user))


@auth_router.post("/2fa/verify", response_model=SuccessResponse)
def two_factor_verify(body: TwoFactorCodeRequest, request: Request,
                      user: User = Depends(get_current_user),
                      db: Session = Depends(get_db)):
    ip_address, user_agent = client_info(request)
    two_factor.verify_two_factor(db, user, body.code, ip_address, user_agent,
                                 sink=SideEffectSink())
    return ok(message="Autenticación de dos factores activada")


@auth_router.post("/2fa/disable", response_model=SuccessResponse)
def two_factor_disable(body: TwoFactorDisableRequest, request: Request,
                       user: User = Depends(get_current_user),
                       db: Session = Depends(get_db),
                       sink: SideEffectSink = Depends(get_sink)):
    ip_address, user_agent = client_info(request)
    two_factor.disable_two_factor(db, user, body.password, ip_address, user_agent, sink=sink)
    return ok(message="Autenticación de dos factores desactivada")


@auth_router.get("/2fa/status", response_model=SuccessResponse)
def two_factor_status(user: User = Depends(get_current_user)):
    return ok(two_factor.two_factor_status(user))


# ============== User Endpoints ==============

@user_router.get("/me", response_model=SuccessResponse)
def me(user: User = Depends(get_current_user)):
    return ok(user.to_dict())


@user_router.put("/profile", response_model=SuccessResponse)
def update_profile(body: ProfileUpdateRequest, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    return ok(accounts.update_profile(db, user, body.model_dump(exclude_unset=True), sink=sink),
              "Perfil actualizado")


@user_router.put("/update-year", response_model=SuccessResponse)
def update_year(body: UpdateYearRequest, user: User = Depends(get_current_user),
                db: Session = Depends(get_db)):
    return ok(accounts.update_year(db, user, body.year, body.division), "Año actualizado")


@user_router.post("/change-password", response_model=SuccessResponse)
def change_password(body: ChangePasswordRequest, request: Request,
                    user: User = Depends(get_current_user),
                    db: Session = Depends(get_db),
                    sink: SideEffectSink = Depends(get_sink)):
    ip_address, user_agent = client_info(request)
    accounts.change_password(db, user, body.current_password, body.new_password,
                             ip_address, user_agent, sink=sink)
    return ok(message="Contraseña actualizada")


@user_router.get("/devices", response_model=SuccessResponse)
def list_devices(current: Tuple[User, UserSession] = Depends(get_current_session),
                 db: Session = Depends(get_db)):
    user, session = current
    return ok(accounts.list_devices(db, user, session))


@user_router.post("/devices/{session_id}/revoke", response_model=SuccessResponse)
def revoke_device(session_id: int, user: User = Depends(get_current_user),
                  db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    accounts.revoke_device(db, user, session_id, sink=sink)
    return ok(message="Sesión revocada")


@user_router.get("/activity", response_model=SuccessResponse)
def recent_activity(limit: int = 10, user: User = Depends(get_current_user),
                    db: Session = Depends(get_db)):
    return ok(accounts.recent_activity(db, user, limit=min(max(limit, 1), 100)))


# ============== Admin: users ==============

@admin_router.get("/users", response_model=SuccessResponse)
def list_users(role: Optional[str] = None, search: Optional[str] = None,
               include_inactive: bool = False, page: int = 1, limit: int = 20,
               _: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ok(admin.list_users(db, role=role, search=search, include_inactive=include_inactive,
                               page=page, limit=limit))


@admin_router.get("/users/stats", response_model=SuccessResponse)
def user_stats(_: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ok(admin.user_stats(db))


@admin_router.get("/users/{user_id}", response_model=SuccessResponse)
def get_user(user_id: int, _: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ok(admin.get_user(db, user_id))


@admin_router.post("/users", response_model=SuccessResponse, status_code=201)
def create_user(body: CreateUserRequest, current: User = Depends(require_admin),
                db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    user = admin.create_user(db, current, body.email, body.password, body.name, body.role,
                             year=body.year, division=body.division, sink=sink)
    return ok(user, "Usuario creado")


@admin_router.put("/users/{user_id}", response_model=SuccessResponse)
def update_user(user_id: int, body: UpdateUserRequest,
                current: User = Depends(require_admin),
                db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    return ok(admin.update_user(db, current, user_id, body.model_dump(exclude_unset=True),
                                sink=sink), "Usuario actualizado")


@admin_router.delete("/users/{user_id}", response_model=SuccessResponse)
def deactivate_user(user_id: int, current: User = Depends(require_admin),
                    db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    return ok(admin.deactivate_user(db, current, user_id, sink=sink), "Usuario desactivado")


# ============== Admin: student approvals ==============

@admin_router.get("/students/pending", response_model=SuccessResponse)
def pending_students(_: User = Depends(require_student_manager),
                     db: Session = Depends(get_db)):
    return ok(admin.list_pending_students(db))


@admin_router.post("/students/{student_id}/approve", response_model=SuccessResponse)
def approve_student(student_id: int, current: User = Depends(require_student_manager),
                    db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    return ok(admin.approve_student(db, current, student_id, sink=sink), "Estudiante aprobado")


@admin_router.post("/students/{student_id}/reject", response_model=SuccessResponse)
def reject_student(student_id: int, body: RejectStudentRequest,
                   current: User = Depends(require_student_manager),
                   db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    return ok(admin.reject_student(db, current, student_id, body.reason, sink=sink),
              "Estudiante rechazado")


# ============== Admin: subjects ==============

@admin_router.get("/subjects", response_model=SuccessResponse)
def admin_subjects(current: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ok(subjects.list_subjects_for(db, current))


@admin_router.post("/subjects", response_model=SuccessResponse, status_code=201)
def create_subject(body: SubjectCreateRequest, current: User = Depends(require_admin),
                   db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    subject = subjects.create_subject(db, current, sink=sink, **body.model_dump())
    return ok(subject, "Materia creada")


@admin_router.put("/subjects/{subject_id}", response_model=SuccessResponse)
def update_subject(subject_id: int, body: SubjectUpdateRequest,
                   current: User = Depends(require_admin),
                   db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    return ok(subjects.update_subject(db, current, subject_id, body.model_dump(exclude_unset=True),
                                      sink=sink), "Materia actualizada")


@admin_router.delete("/subjects/{subject_id}", response_model=SuccessResponse)
def delete_subject(subject_id: int, current: User = Depends(require_admin),
                   db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    subjects.delete_subject(db, current, subject_id, sink=sink)
    return ok(message="Materia eliminada")


@admin_router.post("/subjects/{subject_id}/students", response_model=SuccessResponse)
def assign_students(subject_id: int, body: AssignStudentsRequest,
                    current: User = Depends(require_admin),
                    db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    return ok(subjects.assign_students(db, current, subject_id, body.student_ids, sink=sink))


@admin_router.delete("/subjects/{subject_id}/students/{student_id}", response_model=SuccessResponse)
def unenroll_student(subject_id: int, student_id: int,
                     current: User = Depends(require_admin),
                     db: Session = Depends(get_db)):
    subjects.unenroll_student(db, current, subject_id, student_id)
    return ok(message="Inscripción eliminada")


# ============== Admin: teacher allow-list ==============

@admin_router.get("/teacher-emails", response_model=SuccessResponse)
def list_teacher_emails(_: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ok(site_config.teacher_emails(db))


@admin_router.post("/teacher-emails", response_model=SuccessResponse)
def add_teacher_email(body: TeacherEmailRequest, current: User = Depends(require_admin),
                      db: Session = Depends(get_db)):
    return ok(site_config.add_teacher_email(db, current, body.email))


@admin_router.delete("/teacher-emails/{email}", response_model=SuccessResponse)
def remove_teacher_email(email: str, current: User = Depends(require_admin),
                         db: Session = Depends(get_db)):
    return ok(site_config.remove_teacher_email(db, current, email))


# ============== Admin: maintenance ==============

@admin_router.get("/maintenance", response_model=SuccessResponse)
def get_maintenance(db: Session = Depends(get_db)):
    """Public: the frontend polls it to show the maintenance page."""
    return ok(site_config.get_maintenance(db))


@admin_router.post("/maintenance", response_model=SuccessResponse)
def set_maintenance(body: MaintenanceRequest, current: User = Depends(require_admin),
                    db: Session = Depends(get_db), sink: SideEffectSink = Depends(get_sink)):
    value = site_config.set_maintenance(db, current, body.enabled, body.message,
                                        body.estimated_end, sink=sink)
    return ok(value, "Modo mantenimiento actualizado")


# ============== Admin: security ==============

@admin_router.get("/security/audit-logs", response_model=SuccessResponse)
def audit_logs(action: Optional[str] = None, user_id: Optional[int] = None,
               since: Optional[datetime] = None, until: Optional[datetime] = None,
               page: int = 1, limit: int = 50,
               _: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ok(admin.query_audit_logs(db, action=action, user_id=user_id, since=since,
                                     until=until, page=page, limit=limit))


@admin_router.get("/security/stats", response_model=SuccessResponse)
def security_stats(_: User = Depends(require_admin), db: Session = Depends(get_db)):
    return ok(admin.security_stats(db))
