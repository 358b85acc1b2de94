from datetime import datetime
import pytz
from sqlalchemy import func

from eduquery.extensions import db

ZONES = ("NORTH", "SOUTH", "EAST", "WEST", "CENTRAL")
LEVELS = ("PRIMARY", "SECONDARY", "JUNIOR COLLEGE", "CENTRALISED INSTITUTE")


def get_sgt_time():
    return datetime.now(pytz.timezone("Asia/Singapore"))


class School(db.Model):
    __tablename__ = "schools"

    school_id = db.Column(db.Integer, primary_key=True)
    school_name = db.Column(db.String(200), unique=True, nullable=False)
    address = db.Column(db.String(300), nullable=False)
    postal_code = db.Column(db.String(6), nullable=False)
    zone_code = db.Column(db.String(20), nullable=False)
    mainlevel_code = db.Column(db.String(50), nullable=False)
    principal_name = db.Column(db.String(150), nullable=False)

    created_at = db.Column(db.DateTime, default=get_sgt_time)
    updated_at = db.Column(db.DateTime, default=get_sgt_time, onupdate=get_sgt_time)

    subjects = db.relationship("Subject", secondary="school_subjects", lazy=True)
    programmes = db.relationship("Programme", secondary="school_programmes", lazy=True)
    distinctives = db.relationship(
        "DistinctiveProgramme", secondary="school_distinctives", lazy=True
    )
    cca_links = db.relationship("SchoolCCA", back_populates="school", lazy=True)

    __table_args__ = (
        db.CheckConstraint("length(postal_code) = 6", name="chk_postal_code"),
        db.CheckConstraint(
            "zone_code IN ('NORTH', 'SOUTH', 'EAST', 'WEST', 'CENTRAL')",
            name="chk_zone_code",
        ),
        db.CheckConstraint(
            "mainlevel_code IN ('PRIMARY', 'SECONDARY', 'JUNIOR COLLEGE', 'CENTRALISED INSTITUTE')",
            name="chk_mainlevel",
        ),
    )

    def to_dict(self):
        return {
            "school_id": self.school_id,
            "school_name": self.school_name,
            "address": self.address,
            "postal_code": self.postal_code,
            "zone_code": self.zone_code,
            "mainlevel_code": self.mainlevel_code,
            "principal_name": self.principal_name,
        }

    def __repr__(self):
        return f"<School {self.school_name}>"


class SchoolGeneralInfo(db.Model):
    """
    Extended profile from the MOE "general information of schools" dataset.

    There is no foreign key to School: rows are matched by
    case-insensitive, trimmed school name (see profile_join_condition).
    """
    __tablename__ = "raw_general_info"

    id = db.Column(db.Integer, primary_key=True)
    school_name = db.Column(db.String(200), nullable=False, index=True)
    url_address = db.Column(db.String(300))
    address = db.Column(db.String(300))
    postal_code = db.Column(db.String(10))
    telephone_no = db.Column(db.String(50))
    telephone_no_2 = db.Column(db.String(50))
    fax_no = db.Column(db.String(50))
    email_address = db.Column(db.String(200))
    mrt_desc = db.Column(db.Text)
    bus_desc = db.Column(db.Text)
    principal_name = db.Column(db.String(150))
    first_vp_name = db.Column(db.String(150))
    second_vp_name = db.Column(db.String(150))
    third_vp_name = db.Column(db.String(150))
    fourth_vp_name = db.Column(db.String(150))
    fifth_vp_name = db.Column(db.String(150))
    sixth_vp_name = db.Column(db.String(150))
    dgp_code = db.Column(db.String(100))
    zone_code = db.Column(db.String(20))
    type_code = db.Column(db.String(100))
    nature_code = db.Column(db.String(100))
    session_code = db.Column(db.String(100))
    mainlevel_code = db.Column(db.String(50))
    sap_ind = db.Column(db.String(10))
    autonomous_ind = db.Column(db.String(10))
    gifted_ind = db.Column(db.String(10))
    ip_ind = db.Column(db.String(10))
    mothertongue1_code = db.Column(db.String(50))
    mothertongue2_code = db.Column(db.String(50))
    mothertongue3_code = db.Column(db.String(50))


# Columns surfaced with school detail / search rows
PROFILE_COLUMNS = (
    "email_address",
    "telephone_no",
    "first_vp_name",
    "second_vp_name",
    "type_code",
    "nature_code",
    "session_code",
    "dgp_code",
    "mothertongue1_code",
    "mothertongue2_code",
    "mothertongue3_code",
    "autonomous_ind",
    "gifted_ind",
    "ip_ind",
    "sap_ind",
    "bus_desc",
    "mrt_desc",
)


def profile_join_condition():
    return func.lower(func.trim(School.school_name)) == func.lower(
        func.trim(SchoolGeneralInfo.school_name)
    )
