# points_ledger/db/session.py

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from points_ledger.core.config import settings

engine = create_engine(settings.DATABASE_URL, pool_pre_ping=True)

# autoflush отключен: все изменения баланса явно пишутся внутри транзакции сервиса
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()
