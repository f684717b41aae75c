"""Background task infrastructure using Taskiq.

This package provides:
- broker.py: Taskiq broker (taskiq-aio-pika when RabbitMQ is enabled)
- tasks.py: sweep, tracker and campaign fan-out tasks
- scheduler.py: APScheduler interval jobs that enqueue the sweeps

Run the worker to execute tasks:
    taskiq worker notification_service.tasks.broker:broker notification_service.tasks.tasks
"""
