"""Search algorithms of the VRP solver."""

from .constraints import ConstraintChecker, InsertionResult, RouteSchedule, Violation
from .objective import Fitness, ObjectiveEvaluator
from .construction import ConstructionHeuristic, InsertionHeuristic
from .operators import AdaptiveOperatorSelector, RecreateMethod, RuinMethod, RuinRecreate
from .search import SearchEngine, SearchResult, SearchStatistics, TerminationCriteria, solve
