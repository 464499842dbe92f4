"""
Admin mutations: users, classes, subjects and announcements.

Every public method is wrapped by `admin_action` and is called as
`method(access_token, ...)`. The order inside each method is fixed:
validate the input, perform the mutation, then record the audit entry and
report which listing paths went stale. Datastore errors are mapped as:

    23505 -> CONSTRAINT_VIOLATION (domain message, e.g. duplicate subject code)
    23503 -> CONSTRAINT_VIOLATION (row still referenced / unknown reference)
    PGRST116 -> NOT_FOUND
    other -> BACKEND_FAILURE
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from identity_access.auth_backend import AuthBackend, AuthBackendError
from identity_access.domain import Identity

from .audit import AuditAction, record
from .guard import admin_action, id_tail
from .repo import AdminRepo, FOREIGN_KEY_VIOLATION, NOT_FOUND, RepoError, UNIQUE_VIOLATION
from .results import ActionResult, ErrorKind
from .schemas import AnnouncementInput, ClassInput, CreateUserInput, SubjectInput, parse_input, validation_message


logger = logging.getLogger("eduportal.admin.actions")

USERS_PATH = "/admin/manage-users"
VERIFY_USERS_PATH = "/admin/verify-users"
CLASSES_PATH = "/admin/manage-classes"
SUBJECTS_PATH = "/admin/manage-subjects"
ANNOUNCEMENTS_PATHS = ("/announcements", "/admin/dashboard")

SERVER_ERROR = "Terjadi kesalahan server."


def _invalid(payload: Mapping[str, Any] | None, model):
    parsed, errors = parse_input(model, payload)
    if parsed is None:
        return None, ActionResult.fail(ErrorKind.VALIDATION_FAILED, validation_message(errors), field_errors=errors)
    return parsed, None


def _missing_id(field: str, message: str) -> ActionResult:
    return ActionResult.fail(ErrorKind.VALIDATION_FAILED, message, field_errors={field: [message]})


def _repo_failure(
    exc: RepoError,
    *,
    unique: Optional[str] = None,
    foreign_key: Optional[str] = None,
    not_found: Optional[str] = None,
    fallback: str = SERVER_ERROR,
) -> ActionResult:
    if exc.code == UNIQUE_VIOLATION and unique:
        return ActionResult.fail(ErrorKind.CONSTRAINT_VIOLATION, unique)
    if exc.code == FOREIGN_KEY_VIOLATION and foreign_key:
        return ActionResult.fail(ErrorKind.CONSTRAINT_VIOLATION, foreign_key)
    if exc.code == NOT_FOUND and not_found:
        return ActionResult.fail(ErrorKind.NOT_FOUND, not_found)
    logger.error("Datastore error %s: %s", exc.code, exc.message)
    return ActionResult.fail(ErrorKind.BACKEND_FAILURE, fallback)


class AdminService:
    """Guarded admin mutations over an auth backend and an admin repo."""

    def __init__(self, backend: AuthBackend, repo: AdminRepo):
        self.backend = backend
        self.repo = repo

    # --- Users -------------------------------------------------------------------

    @admin_action("create_user")
    def create_user(self, actor: Identity, payload: Mapping[str, Any] | None) -> ActionResult:
        data, failed = _invalid(payload, CreateUserInput)
        if failed:
            return failed
        try:
            created = self.backend.admin_create_user(
                email=data.email,
                password=data.password,
                full_name=data.full_name,
                role=data.role,
                email_confirm=True,
            )
        except AuthBackendError as exc:
            if exc.code == "email_taken":
                return ActionResult.fail(ErrorKind.CONSTRAINT_VIOLATION, f'Email "{data.email}" sudah terdaftar.')
            logger.error("Auth user creation failed: %s", exc.code)
            return ActionResult.fail(ErrorKind.BACKEND_FAILURE, "Gagal membuat pengguna.")

        message = "Pengguna berhasil dibuat."
        try:
            self.repo.insert_profile(
                user_id=created.id,
                email=data.email,
                full_name=data.full_name,
                role=data.role,
                is_verified=True,
            )
        except RepoError as exc:
            # The auth account exists; report success so the admin does not retry and hit email_taken.
            logger.warning("Profile insert failed for user %s: %s", id_tail(created.id), exc.code)
            message = "Pengguna berhasil dibuat, tetapi gagal menyimpan detail profil."

        record(
            self.repo,
            actor,
            AuditAction.CREATE_USER,
            target_type="user",
            target_id=created.id,
            message=f"Membuat pengguna {data.email} sebagai {data.role.value}",
        )
        logger.info("Admin %s created user %s", id_tail(actor.id), id_tail(created.id))
        return ActionResult.ok(message, invalidate=(USERS_PATH,), user_id=created.id)

    @admin_action("delete_user")
    def delete_user(self, actor: Identity, user_id: Optional[str]) -> ActionResult:
        if not user_id:
            return _missing_id("user_id", "ID Pengguna tidak valid.")
        if user_id == actor.id:
            return ActionResult.fail(ErrorKind.AUTHORIZATION_DENIED, "Tidak dapat menghapus akun admin sendiri.")
        try:
            self.backend.admin_delete_user(user_id)
        except AuthBackendError as exc:
            if exc.code == "user_not_found":
                return ActionResult.fail(ErrorKind.NOT_FOUND, f"Pengguna dengan ID {user_id} tidak ditemukan.")
            logger.error("Auth user deletion failed: %s", exc.code)
            return ActionResult.fail(ErrorKind.BACKEND_FAILURE, "Terjadi kesalahan server saat menghapus pengguna.")
        try:
            self.repo.delete_profile(user_id)
        except RepoError as exc:
            logger.warning("Profile cleanup failed for user %s: %s", id_tail(user_id), exc.code)

        record(
            self.repo,
            actor,
            AuditAction.DELETE_USER,
            target_type="user",
            target_id=user_id,
            message="Menghapus pengguna",
        )
        logger.info("Admin %s deleted user %s", id_tail(actor.id), id_tail(user_id))
        return ActionResult.ok("Pengguna berhasil dihapus.", invalidate=(USERS_PATH, VERIFY_USERS_PATH))

    @admin_action("verify_user")
    def verify_user(self, actor: Identity, user_id: Optional[str]) -> ActionResult:
        if not user_id:
            return _missing_id("user_id", "ID Pengguna tidak valid.")
        try:
            self.repo.set_profile_verified(user_id, True)
        except RepoError as exc:
            return _repo_failure(
                exc,
                not_found=f"Pengguna dengan ID {user_id} tidak ditemukan.",
                fallback="Gagal memperbarui status verifikasi pengguna.",
            )
        metadata_synced = True
        try:
            self.backend.admin_update_metadata(user_id, {"is_verified": True})
        except AuthBackendError as exc:
            metadata_synced = False
            logger.warning("Metadata sync failed for user %s: %s", id_tail(user_id), exc.code)

        record(
            self.repo,
            actor,
            AuditAction.VERIFY_USER,
            target_type="user",
            target_id=user_id,
            message="Memverifikasi pengguna",
        )
        return ActionResult.ok(
            "Pengguna berhasil diverifikasi.",
            invalidate=(VERIFY_USERS_PATH, USERS_PATH),
            metadata_synced=metadata_synced,
        )

    # --- Classes -----------------------------------------------------------------

    @admin_action("create_class")
    def create_class(self, actor: Identity, payload: Mapping[str, Any] | None) -> ActionResult:
        data, failed = _invalid(payload, ClassInput)
        if failed:
            return failed
        try:
            row = self.repo.insert_class({"name": data.name, "homeroom_teacher_id": data.homeroom_teacher_id})
        except RepoError as exc:
            return _repo_failure(
                exc,
                unique=f'Nama kelas "{data.name}" sudah digunakan.',
                foreign_key="Wali kelas tidak ditemukan.",
                fallback="Gagal menambahkan kelas.",
            )
        record(self.repo, actor, AuditAction.CREATE_CLASS, target_type="class", target_id=row.get("id"), message=f"Membuat kelas {data.name}")
        return ActionResult.ok("Kelas berhasil ditambahkan.", invalidate=(CLASSES_PATH,), class_id=row.get("id"))

    @admin_action("update_class")
    def update_class(self, actor: Identity, class_id: Optional[str], payload: Mapping[str, Any] | None) -> ActionResult:
        if not class_id:
            return _missing_id("class_id", "ID Kelas tidak valid.")
        data, failed = _invalid(payload, ClassInput)
        if failed:
            return failed
        try:
            self.repo.update_class(class_id, {"name": data.name, "homeroom_teacher_id": data.homeroom_teacher_id})
        except RepoError as exc:
            return _repo_failure(
                exc,
                unique=f'Nama kelas "{data.name}" sudah digunakan.',
                foreign_key="Wali kelas tidak ditemukan.",
                not_found="Kelas tidak ditemukan.",
                fallback="Gagal memperbarui kelas.",
            )
        record(self.repo, actor, AuditAction.UPDATE_CLASS, target_type="class", target_id=class_id, message=f"Memperbarui kelas {data.name}")
        return ActionResult.ok("Kelas berhasil diperbarui.", invalidate=(CLASSES_PATH,))

    @admin_action("delete_class")
    def delete_class(self, actor: Identity, class_id: Optional[str]) -> ActionResult:
        if not class_id:
            return _missing_id("class_id", "ID Kelas tidak valid.")
        try:
            self.repo.delete_class(class_id)
        except RepoError as exc:
            return _repo_failure(
                exc,
                foreign_key="Gagal menghapus: Kelas ini masih digunakan di jadwal, tugas, atau data lain.",
                not_found="Kelas tidak ditemukan.",
                fallback="Gagal menghapus kelas.",
            )
        record(self.repo, actor, AuditAction.DELETE_CLASS, target_type="class", target_id=class_id, message="Menghapus kelas")
        return ActionResult.ok("Kelas berhasil dihapus.", invalidate=(CLASSES_PATH,))

    # --- Subjects ----------------------------------------------------------------

    @admin_action("create_subject")
    def create_subject(self, actor: Identity, payload: Mapping[str, Any] | None) -> ActionResult:
        data, failed = _invalid(payload, SubjectInput)
        if failed:
            return failed
        try:
            row = self.repo.insert_subject(data.model_dump())
        except RepoError as exc:
            return _repo_failure(
                exc,
                unique=f'Kode mata pelajaran "{data.subject_code}" sudah digunakan.',
                fallback="Gagal menambahkan mata pelajaran.",
            )
        record(
            self.repo,
            actor,
            AuditAction.CREATE_SUBJECT,
            target_type="subject",
            target_id=row.get("id"),
            message=f"Membuat mata pelajaran {data.subject_code}",
        )
        return ActionResult.ok("Mata pelajaran berhasil ditambahkan.", invalidate=(SUBJECTS_PATH,), subject_id=row.get("id"))

    @admin_action("update_subject")
    def update_subject(self, actor: Identity, subject_id: Optional[str], payload: Mapping[str, Any] | None) -> ActionResult:
        if not subject_id:
            return _missing_id("subject_id", "ID Mata Pelajaran tidak valid.")
        data, failed = _invalid(payload, SubjectInput)
        if failed:
            return failed
        try:
            self.repo.update_subject(subject_id, data.model_dump())
        except RepoError as exc:
            return _repo_failure(
                exc,
                unique=f'Kode mata pelajaran "{data.subject_code}" sudah digunakan.',
                not_found="Mata pelajaran tidak ditemukan.",
                fallback="Gagal memperbarui mata pelajaran.",
            )
        record(
            self.repo,
            actor,
            AuditAction.UPDATE_SUBJECT,
            target_type="subject",
            target_id=subject_id,
            message=f"Memperbarui mata pelajaran {data.subject_code}",
        )
        return ActionResult.ok("Mata pelajaran berhasil diperbarui.", invalidate=(SUBJECTS_PATH,))

    @admin_action("delete_subject")
    def delete_subject(self, actor: Identity, subject_id: Optional[str]) -> ActionResult:
        if not subject_id:
            return _missing_id("subject_id", "ID Mata Pelajaran tidak valid.")
        try:
            self.repo.delete_subject(subject_id)
        except RepoError as exc:
            return _repo_failure(
                exc,
                foreign_key="Gagal menghapus: Mata pelajaran ini masih digunakan di jadwal, tugas, atau data lain.",
                not_found="Mata pelajaran tidak ditemukan.",
                fallback="Gagal menghapus mata pelajaran.",
            )
        record(self.repo, actor, AuditAction.DELETE_SUBJECT, target_type="subject", target_id=subject_id, message="Menghapus mata pelajaran")
        return ActionResult.ok("Mata pelajaran berhasil dihapus.", invalidate=(SUBJECTS_PATH,))

    # --- Announcements -----------------------------------------------------------

    @staticmethod
    def _announcement_values(data: AnnouncementInput) -> dict:
        return {
            "title": data.title,
            "content": data.content,
            "target_role": data.target_role.value if data.target_role else None,
            "is_pinned": data.is_pinned,
        }

    @admin_action("create_announcement")
    def create_announcement(self, actor: Identity, payload: Mapping[str, Any] | None) -> ActionResult:
        data, failed = _invalid(payload, AnnouncementInput)
        if failed:
            return failed
        try:
            row = self.repo.insert_announcement({**self._announcement_values(data), "created_by": actor.id})
        except RepoError as exc:
            return _repo_failure(exc, fallback="Gagal menambahkan pengumuman.")
        record(
            self.repo,
            actor,
            AuditAction.CREATE_ANNOUNCEMENT,
            target_type="announcement",
            target_id=row.get("id"),
            message=f"Membuat pengumuman {data.title}",
        )
        return ActionResult.ok("Pengumuman berhasil ditambahkan.", invalidate=ANNOUNCEMENTS_PATHS, announcement_id=row.get("id"))

    @admin_action("update_announcement")
    def update_announcement(
        self, actor: Identity, announcement_id: Optional[str], payload: Mapping[str, Any] | None
    ) -> ActionResult:
        if not announcement_id:
            return _missing_id("announcement_id", "ID Pengumuman tidak valid.")
        data, failed = _invalid(payload, AnnouncementInput)
        if failed:
            return failed
        try:
            self.repo.update_announcement(announcement_id, self._announcement_values(data))
        except RepoError as exc:
            return _repo_failure(exc, not_found="Pengumuman tidak ditemukan.", fallback="Gagal memperbarui pengumuman.")
        record(
            self.repo,
            actor,
            AuditAction.UPDATE_ANNOUNCEMENT,
            target_type="announcement",
            target_id=announcement_id,
            message=f"Memperbarui pengumuman {data.title}",
        )
        return ActionResult.ok("Pengumuman berhasil diperbarui.", invalidate=ANNOUNCEMENTS_PATHS)

    @admin_action("delete_announcement")
    def delete_announcement(self, actor: Identity, announcement_id: Optional[str]) -> ActionResult:
        if not announcement_id:
            return _missing_id("announcement_id", "ID Pengumuman tidak valid.")
        try:
            self.repo.delete_announcement(announcement_id)
        except RepoError as exc:
            return _repo_failure(exc, not_found="Pengumuman tidak ditemukan.", fallback="Gagal menghapus pengumuman.")
        record(
            self.repo,
            actor,
            AuditAction.DELETE_ANNOUNCEMENT,
            target_type="announcement",
            target_id=announcement_id,
            message="Menghapus pengumuman",
        )
        return ActionResult.ok("Pengumuman berhasil dihapus.", invalidate=ANNOUNCEMENTS_PATHS)

    @admin_action("pin_announcement")
    def pin_announcement(self, actor: Identity, announcement_id: Optional[str], pinned: bool) -> ActionResult:
        if not announcement_id:
            return _missing_id("announcement_id", "ID Pengumuman tidak valid.")
        try:
            self.repo.update_announcement(announcement_id, {"is_pinned": bool(pinned)})
        except RepoError as exc:
            return _repo_failure(exc, not_found="Pengumuman tidak ditemukan.", fallback="Gagal mengubah status pin pengumuman.")
        record(
            self.repo,
            actor,
            AuditAction.PIN_ANNOUNCEMENT,
            target_type="announcement",
            target_id=announcement_id,
            message="Menyematkan pengumuman" if pinned else "Melepas sematan pengumuman",
            is_pinned=bool(pinned),
        )
        state = "disematkan" if pinned else "dilepas"
        return ActionResult.ok(f"Pengumuman berhasil {state}.", invalidate=ANNOUNCEMENTS_PATHS)


__all__ = ["AdminService"]
