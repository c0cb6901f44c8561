from __future__ import annotations

from sqlalchemy import BigInteger, Column, DateTime, Integer, Text, UniqueConstraint, func
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class DictionaryEntry(Base):
    __tablename__ = "dictionary"
    __table_args__ = (
        UniqueConstraint("incorrect", "correct", name="uq_dictionary_incorrect_correct"),
    )

    # SQLite では INTEGER PRIMARY KEY でないと自動採番されない
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    incorrect = Column(Text, nullable=False, index=True)
    correct = Column(Text, nullable=False)
    category = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
