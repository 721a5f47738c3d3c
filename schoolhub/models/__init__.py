# Import all models to ensure they're registered with SQLAlchemy
from schoolhub.database import Base
from schoolhub.models.users import User
from schoolhub.models.schools import School, Teacher, Subject, BasicCompetency, SchoolBenchmark, Report
from schoolhub.models.academics import Student, AcademicRecord, StudentAttendance
from schoolhub.models.finance import SchoolFinance, FinancialTransaction
from schoolhub.models.assets import Asset, AssetMaintenance
from schoolhub.models.facilities import Facility, FacilityUsage
from schoolhub.models.kpi import SchoolKpi
from schoolhub.models.teachers import TeacherPerformance, TeacherPerformanceDetail, TeacherDevelopment, TeacherAttendance
from schoolhub.models.analysis import AiRecommendation, EarlyWarning
