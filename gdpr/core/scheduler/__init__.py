from gdpr.core.scheduler.bridge import ManualScheduler, ScheduledTask, SchedulerBridge, TaskHandler, ThreadScheduler, VirtualClock

__all__ = ["ManualScheduler", "ScheduledTask", "SchedulerBridge", "TaskHandler", "ThreadScheduler", "VirtualClock"]
