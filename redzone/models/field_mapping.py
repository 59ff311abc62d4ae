"""
External field mappings.

Maps fields from the Chargebee billing account and the MySQL company
database onto local fields. The sync jobs that copy the values live outside
this service; the red zone field catalog reads these tables to offer the
mapped fields in the rule builder.
"""

from sqlalchemy import Column, Integer, String, Boolean, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from redzone.database import Base


class ChargebeeFieldMapping(Base):
    __tablename__ = "chargebee_field_mappings"
    __table_args__ = (
        UniqueConstraint("chargebee_entity", "chargebee_field", name="uq_chargebee_entity_field"),
    )

    id = Column(Integer, primary_key=True, index=True)
    chargebee_entity = Column(String(50), nullable=False, index=True)  # 'subscription', 'invoice', 'customer'
    chargebee_field = Column(String(100), nullable=False)
    local_table = Column(String(100), nullable=False)
    local_field = Column(String(100), nullable=False)
    is_key_field = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<ChargebeeFieldMapping {self.chargebee_entity}.{self.chargebee_field} -> {self.local_field}>"


class MySQLFieldMapping(Base):
    __tablename__ = "mysql_field_mappings"
    __table_args__ = (
        UniqueConstraint("mysql_table", "mysql_field", name="uq_mysql_table_field"),
    )

    id = Column(Integer, primary_key=True, index=True)
    mysql_table = Column(String(100), nullable=False)
    mysql_field = Column(String(100), nullable=False)
    local_table = Column(String(100), nullable=False, index=True)
    local_field = Column(String(100), nullable=False)
    field_type = Column(String(50))  # Declared type on the MySQL side, may be blank
    is_key_field = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<MySQLFieldMapping {self.mysql_table}.{self.mysql_field} -> {self.local_field}>"
