from overflow_watch.models.status import EventList, EventView, HealthResponse

__all__ = ["EventList", "EventView", "HealthResponse"]
