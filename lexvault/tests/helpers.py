"""Small query helpers shared by the test modules."""

from pathlib import Path

from sqlalchemy import select

from lexvault.models import AuditAction, AuditLog

MINIMAL_PDF = (
    b"%PDF-1.4\n"
    b"1 0 obj << /Type /Catalog /Pages 2 0 R >> endobj\n"
    b"2 0 obj << /Type /Pages /Kids [] /Count 0 >> endobj\n"
    b"trailer << /Root 1 0 R >>\n"
    b"%%EOF\n"
)

WINDOWS_EXECUTABLE = b"MZ\x90\x00\x03\x00\x00\x00\x04\x00\x00\x00\xff\xff\x00\x00" + b"\x00" * 64


async def audit_records(session_factory, action: AuditAction | None = None) -> list[AuditLog]:
    async with session_factory() as session:
        query = select(AuditLog).order_by(AuditLog.id)
        if action is not None:
            query = query.where(AuditLog.action == action)
        result = await session.execute(query)
        return list(result.scalars().all())


def stored_blobs(root: Path) -> list[Path]:
    """Blob files under the store root, excluding metadata sidecars."""
    if not root.exists():
        return []
    return [p for p in root.rglob("*") if p.is_file() and not p.name.endswith(".meta")]
