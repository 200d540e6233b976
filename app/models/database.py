import logging
import os
from dotenv import load_dotenv
from sqlalchemy import create_engine, Column, Integer, String, DateTime, Boolean, Text, Float, ForeignKey
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime

load_dotenv()

logger = logging.getLogger(__name__)

Base = declarative_base()


class Municipality(Base):
    __tablename__ = 'municipalities'

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    status = Column(String(50), default='active')
    notes = Column(Text)
    district = Column(Integer, default=1)


class MunicipalityCheckpoint(Base):
    __tablename__ = 'municipality_checkpoints'

    id = Column(String(64), primary_key=True)
    municipality_id = Column(String(64), ForeignKey('municipalities.id'), index=True)
    label = Column(String(255), nullable=False)
    completed = Column(Boolean, default=False)


class Title(Base):
    __tablename__ = 'titles'

    id = Column(String(64), primary_key=True)
    municipality_id = Column(String(64), ForeignKey('municipalities.id'), index=True)
    serial_number = Column('serialNumber', String(100), nullable=False, index=True)
    title_type = Column('titleType', String(100), nullable=False)
    subtype = Column(String(100))
    beneficiary_name = Column('beneficiaryName', String(255), nullable=False)
    lot_number = Column('lotNumber', String(100), nullable=False)
    barangay_location = Column('barangayLocation', String(255))
    area = Column(Float, default=0)
    status = Column(String(50), default='on-hand')
    date_issued = Column('dateIssued', String(50))
    date_registered = Column('dateRegistered', String(50))
    date_received = Column('dateReceived', String(50))
    date_distributed = Column('dateDistributed', String(50))
    notes = Column(Text)
    mother_ccloa_no = Column('mother_ccloa_no', String(100))
    title_no = Column('title_no', String(100))


class User(Base):
    __tablename__ = 'users'

    id = Column(String(64), primary_key=True)
    username = Column(String(100), unique=True, nullable=False)
    password = Column(String(255), nullable=False)
    role = Column(String(50), default='VIEWER')
    full_name = Column('fullName', String(255), default='')
    email = Column(String(255), default='')
    contact_number = Column('contactNumber', String(50), default='')
    status = Column(String(50), default='ACTIVE')
    must_change_password = Column('mustChangePassword', Boolean, default=False)


class AuditLog(Base):
    __tablename__ = 'audit_logs'

    id = Column(String(64), primary_key=True)
    user_id = Column('userId', String(64))
    action = Column(String(100), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow)


# The 20 municipalities of La Union with their congressional districts
PREDEFINED_MUNICIPALITIES = [
    ('1', 'Agoo', 2),
    ('2', 'Aringay', 2),
    ('3', 'Bacnotan', 1),
    ('4', 'Bagulin', 2),
    ('5', 'Balaoan', 1),
    ('6', 'Bangar', 1),
    ('7', 'Bauang', 2),
    ('8', 'Burgos', 2),
    ('9', 'Caba', 2),
    ('10', 'Luna', 1),
    ('11', 'Naguilian', 2),
    ('12', 'Pugo', 2),
    ('13', 'Rosario', 2),
    ('14', 'San Gabriel', 1),
    ('15', 'San Juan', 1),
    ('16', 'Santol', 1),
    ('17', 'Santo Tomas', 2),
    ('18', 'Sudipen', 1),
    ('19', 'Tubao', 2),
    ('20', 'San Fernando', 1),
]

DEFAULT_CHECKPOINT_LABELS = ('Initial Documentation Completed', 'Final Processing & Release')


def get_database_url():
    url = os.getenv('DATABASE_URL')
    if url:
        logger.info("Using configured database URL")
        return url

    # Fall back to SQLite for demo/development
    logger.info("No DATABASE_URL configured, using SQLite")
    return "sqlite:///./land_titles.db"


def _echo_enabled():
    return (os.getenv('DB_ECHO') or '').strip().lower() in {'1', 'true', 'yes'}


def _connect_args(url):
    # Request handlers and import workers share pooled SQLite connections across threads
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


# Create engine and session
DATABASE_URL = get_database_url()
engine = create_engine(DATABASE_URL, echo=_echo_enabled(), connect_args=_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def seed_municipalities(db):
    """Insert the predefined municipalities and their checkpoints when the table is empty."""
    if db.query(Municipality.id).first() is not None:
        return 0

    for muni_id, name, district in PREDEFINED_MUNICIPALITIES:
        db.add(Municipality(id=muni_id, name=name, status='active', notes='', district=district))
        for position, label in enumerate(DEFAULT_CHECKPOINT_LABELS, start=1):
            db.add(MunicipalityCheckpoint(
                id=f"{muni_id}-{position}",
                municipality_id=muni_id,
                label=label,
                completed=False,
            ))
    db.commit()
    logger.info("Inserted %d predefined municipalities", len(PREDEFINED_MUNICIPALITIES))
    return len(PREDEFINED_MUNICIPALITIES)


def init_db(bind=None, session_factory=None):
    """Create tables, seed reference data and make sure the admin account exists."""
    from app.services.auth_service import ensure_admin

    Base.metadata.create_all(bind=bind or engine)
    factory = session_factory or SessionLocal
    with factory() as db:
        seed_municipalities(db)
        ensure_admin(db)
