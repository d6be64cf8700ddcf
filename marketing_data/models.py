from datetime import datetime

from sqlalchemy import Column, String, Integer, Float, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from .db import Base

# -----------------------------
# ETL tables
# -----------------------------
class Source(Base):
    __tablename__ = "sources"
    # A configured external data origin (API, file drop, partner feed)
    id          = Column(Integer, primary_key=True, autoincrement=True)
    name        = Column(String, unique=True, index=True, nullable=False)
    kind        = Column(String)                              # e.g. api, file
    format      = Column(String)                              # json/csv/xml/text, NULL = sniff
    url         = Column(String)
    description = Column(String)

    raw_data = relationship("RawData", back_populates="source")


class RawData(Base):
    __tablename__ = "raw_data"
    # As-ingested payload; never mutated by the pipeline
    id          = Column(Integer, primary_key=True, autoincrement=True)
    content     = Column(Text, nullable=False)
    timestamp   = Column(DateTime)                            # when the source produced it
    ingested_at = Column(DateTime, default=datetime.now, nullable=False)
    source_id   = Column(Integer, ForeignKey("sources.id"), index=True)
    format      = Column(String)                              # resolved at ingestion time

    source = relationship("Source", back_populates="raw_data")


class NormalizedData(Base):
    __tablename__ = "normalized_data"
    # Output of the latest pipeline run; replaced wholesale on every run
    id            = Column(Integer, primary_key=True, autoincrement=True)
    system_id     = Column(String, index=True, nullable=False)
    category      = Column(String, nullable=False)
    value         = Column(Float)
    content       = Column(Text)
    source_format = Column(String)
    raw_data_id   = Column(Integer, ForeignKey("raw_data.id"))
    run_id        = Column(Integer, ForeignKey("ingestion_logs.id"))


class IngestionLog(Base):
    __tablename__ = "ingestion_logs"
    # One row per pipeline run (scheduled or manual)
    id          = Column(Integer, primary_key=True, autoincrement=True)
    trigger     = Column(String, nullable=False)              # scheduled/manual
    status      = Column(String, nullable=False)              # running/completed/failed
    started_at  = Column(DateTime, nullable=False)
    finished_at = Column(DateTime)
    processed   = Column(Integer, default=0)                  # raw records read
    stored      = Column(Integer, default=0)                  # normalized records written
    warnings    = Column(Integer, default=0)
    error       = Column(Text)


# -----------------------------
# Marketing CRM tables
# -----------------------------
class Client(Base):
    __tablename__ = "clients"
    id         = Column(Integer, primary_key=True, autoincrement=True)
    name       = Column(String, nullable=False)
    email      = Column(String, unique=True, index=True, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

    sales = relationship("Sale", back_populates="client")


class Product(Base):
    __tablename__ = "products"
    id       = Column(Integer, primary_key=True, autoincrement=True)
    sku      = Column(String, unique=True, index=True)        # optional external code
    name     = Column(String, nullable=False)
    category = Column(String, nullable=False)
    supplier = Column(String)
    price    = Column(Float, nullable=False)

    sales = relationship("Sale", back_populates="product")
    stock = relationship("Stock", back_populates="product")


class Sale(Base):
    __tablename__ = "sales"
    id             = Column(Integer, primary_key=True, autoincrement=True)
    client_id      = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    product_id     = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity       = Column(Integer, nullable=False)
    unit_price     = Column(Float, nullable=False)
    total          = Column(Float, nullable=False)           # quantity * unit_price
    sold_at        = Column(DateTime, default=datetime.now)
    branch         = Column(String)
    payment_method = Column(String)

    client  = relationship("Client", back_populates="sales")
    product = relationship("Product", back_populates="sales")


class Stock(Base):
    __tablename__ = "stock"
    id         = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False, index=True)
    quantity   = Column(Integer, nullable=False)
    branch     = Column(String)
    location   = Column(String)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    product = relationship("Product", back_populates="stock")


class Report(Base):
    __tablename__ = "reports"
    id          = Column(Integer, primary_key=True, autoincrement=True)
    name        = Column(String, nullable=False)
    description = Column(String)
    file_name   = Column(String, nullable=False)
    path        = Column(String, nullable=False)
    created_at  = Column(DateTime, default=datetime.now, nullable=False)

    def __repr__(self):
        return f"<Report(id={self.id}, file_name={self.file_name})>"
