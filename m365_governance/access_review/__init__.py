from .filters import GroupQueryBuilder, GroupQuery
from .groups import Group, GroupResolver
from .review import AccessReviewSubmitter, ResultRecord, build_definition, run_start_utc
from .reporter import report_results
from .runner import AccessReviewRunError, run_access_reviews

__all__ = [
    "GroupQueryBuilder",
    "GroupQuery",
    "Group",
    "GroupResolver",
    "AccessReviewSubmitter",
    "ResultRecord",
    "build_definition",
    "run_start_utc",
    "report_results",
    "AccessReviewRunError",
    "run_access_reviews",
]
