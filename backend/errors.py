import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

logger = logging.getLogger(__name__)


class BudgetControlError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BudgetControlError):
    """Field wajib kosong, payload salah, nilai <= 0, atau kunci unik ganda."""
    status_code = 400


class NotFoundError(BudgetControlError):
    status_code = 404


class ConflictError(BudgetControlError):
    """Alokasi tidak cukup, atau saldo kartu diubah proses lain di saat bersamaan."""
    status_code = 409


class StorageError(BudgetControlError):
    status_code = 500


async def budget_control_error_handler(request: Request, exc: BudgetControlError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} gagal: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "error", "detail": exc.message},
    )


def register_error_handlers(app: FastAPI):
    app.add_exception_handler(BudgetControlError, budget_control_error_handler)


@asynccontextmanager
async def unit_of_work(db: AsyncSession, action: str):
    """Satu operasi = satu commit. Gagal di langkah mana pun -> rollback semua."""
    try:
        yield
        await db.commit()
    except BudgetControlError:
        await db.rollback()
        raise
    except StaleDataError:
        await db.rollback()
        raise ConflictError(f"Gagal {action}: data diubah proses lain, silakan ulangi")
    except IntegrityError as e:
        await db.rollback()
        logger.error(f"Gagal {action} (integrity): {e.orig}")
        raise ValidationError(f"Gagal {action}: data duplikat atau referensi tidak valid")
    except SQLAlchemyError as e:
        await db.rollback()
        logger.exception(f"Gagal {action}")
        raise StorageError(f"Gagal {action}: {e.__class__.__name__}")
