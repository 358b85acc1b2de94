from eduquery.extensions import db
from eduquery.models.school import get_sgt_time

school_subjects = db.Table(
    "school_subjects",
    db.Column(
        "school_id",
        db.Integer,
        db.ForeignKey("schools.school_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    db.Column(
        "subject_id",
        db.Integer,
        db.ForeignKey("subjects.subject_id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Subject(db.Model):
    __tablename__ = "subjects"

    subject_id = db.Column(db.Integer, primary_key=True)
    subject_desc = db.Column(db.String(200), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=get_sgt_time)

    def __repr__(self):
        return f"<Subject {self.subject_desc}>"
