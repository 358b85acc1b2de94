from eduquery.extensions import db
from eduquery.models.school import get_sgt_time

school_programmes = db.Table(
    "school_programmes",
    db.Column(
        "school_id",
        db.Integer,
        db.ForeignKey("schools.school_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "programme_id",
        db.Integer,
        db.ForeignKey("programmes.programme_id", ondelete="CASCADE"),
        primary_key=True,
    ),
)

school_distinctives = db.Table(
    "school_distinctives",
    db.Column(
        "school_id",
        db.Integer,
        db.ForeignKey("schools.school_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "distinctive_id",
        db.Integer,
        db.ForeignKey("distinctive_programmes.distinctive_id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Programme(db.Model):
    __tablename__ = "programmes"

    programme_id = db.Column(db.Integer, primary_key=True)
    moe_programme_desc = db.Column(db.String(300), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=get_sgt_time)

    def __repr__(self):
        return f"<Programme {self.moe_programme_desc}>"


class DistinctiveProgramme(db.Model):
    """Applied Learning Programme (ALP) / Learning for Life Programme (LLP)."""
    __tablename__ = "distinctive_programmes"

    distinctive_id = db.Column(db.Integer, primary_key=True)
    alp_domain = db.Column(db.String(200))
    alp_title = db.Column(db.String(300))
    llp_domain1 = db.Column(db.String(200))
    llp_title = db.Column(db.String(300))
    created_at = db.Column(db.DateTime, default=get_sgt_time)

    __table_args__ = (
        db.CheckConstraint(
            "alp_domain IS NOT NULL OR llp_domain1 IS NOT NULL",
            name="chk_at_least_one_programme",
        ),
        db.UniqueConstraint(
            "alp_domain", "alp_title", "llp_domain1", "llp_title",
            name="uq_distinctive_programme",
        ),
    )

    def to_dict(self):
        return {
            "distinctive_id": self.distinctive_id,
            "alp_domain": self.alp_domain,
            "alp_title": self.alp_title,
            "llp_domain1": self.llp_domain1,
            "llp_title": self.llp_title,
        }
