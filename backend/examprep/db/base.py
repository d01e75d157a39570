from examprep.db.base_class import Base

# Import all models so Base.metadata knows every table
from examprep.models.syllabus_topic import SyllabusTopic
from examprep.models.question import Question
from examprep.models.question_exposure import QuestionExposure
from examprep.models.assembled_test import AssembledTestQuestion, AssembledTestRecord, TestConfigurationRecord
