# Импортируем все модели, чтобы relationship("...") разрешались при первом обращении
from .member import Member
from .ledger import LedgerEntry
from .purchase import PointPurchase
