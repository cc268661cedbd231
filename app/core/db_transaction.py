from contextlib import contextmanager
from sqlalchemy.orm import Session
from app.core.database import SessionLocal
from app.core.exceptions import StorefrontError
from app.core.logging_config import get_logger

logger = get_logger("db_transaction")


@contextmanager
def db_transaction(db: Session = None):
    if db is None:
        db = SessionLocal()
        should_close = True
    else:
        should_close = False
    try:
        yield db
        db.commit()
    except StorefrontError as e:
        db.rollback()
        logger.warning(f"Transaction rolled back: {e.reason}: {e.message}")
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"Transaction rolled back: {str(e)}", exc_info=True)
        raise
    finally:
        if should_close:
            db.close()
