from analytics_api.models.visitor_session import VisitorSession  # noqa: F401
from analytics_api.models.visitor_stat import VisitorStat  # noqa: F401
from analytics_api.models.job_lease import JobLease  # noqa: F401
