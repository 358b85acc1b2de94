from eduquery.extensions import db
from eduquery.models.school import get_sgt_time

SCHOOL_SECTIONS = ("PRIMARY", "SECONDARY", "BOTH")


class CCA(db.Model):
    __tablename__ = "ccas"

    cca_id = db.Column(db.Integer, primary_key=True)
    cca_generic_name = db.Column(db.String(200), unique=True, nullable=False)
    cca_grouping_desc = db.Column(db.String(200))
    created_at = db.Column(db.DateTime, default=get_sgt_time)

    school_links = db.relationship("SchoolCCA", back_populates="cca", lazy=True)

    def __repr__(self):
        return f"<CCA {self.cca_generic_name}>"


class SchoolCCA(db.Model):
    """School <-> CCA link with the school's own name for the activity."""
    __tablename__ = "school_ccas"

    school_id = db.Column(
        db.Integer,
        db.ForeignKey("schools.school_id", ondelete="CASCADE"),
        primary_key=True,
    )
    cca_id = db.Column(
        db.Integer,
        db.ForeignKey("ccas.cca_id", ondelete="CASCADE"),
        primary_key=True,
    )
    cca_customized_name = db.Column(db.String(200))
    school_section = db.Column(db.String(50))
    created_at = db.Column(db.DateTime, default=get_sgt_time)

    school = db.relationship("School", back_populates="cca_links")
    cca = db.relationship("CCA", back_populates="school_links")

    __table_args__ = (
        db.CheckConstraint(
            "school_section IS NULL OR school_section IN ('PRIMARY', 'SECONDARY', 'BOTH')",
            name="chk_school_section",
        ),
    )
