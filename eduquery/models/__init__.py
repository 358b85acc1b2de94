from .school import School, SchoolGeneralInfo
from .subject import Subject, school_subjects
from .cca import CCA, SchoolCCA
from .programme import Programme, DistinctiveProgramme, school_programmes, school_distinctives
from .user import User
