# Pipeline stages module
from .stage1_sources import SourceLookupStage
from .stage2_classifiers import ClassificationStage
from .stage3_fusion import FusionStage
from .stage4_scoring import LeadScoringStage
