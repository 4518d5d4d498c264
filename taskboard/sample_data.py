"""
Sample tasks for demos and local development.
"""

import logging

from taskboard.database import DatabaseManager, Task, TaskRepository

logger = logging.getLogger(__name__)

SAMPLE_ACTOR = "admin"

# (title, description, status, priority, assignee, estimated_hours, tags)
SAMPLE_TASKS = [
    ("Setup Project Infrastructure",
     "Initialize the project repository, setup CI/CD pipeline, and configure development environment",
     "DONE", "HIGH", "John Smith", 8, "setup,infrastructure,devops"),
    ("Design User Interface Mockups",
     "Create wireframes and high-fidelity mockups for the main user interface using Figma",
     "IN_PROGRESS", "MEDIUM", "Sarah Johnson", 12, "design,ui,mockups"),
    ("Implement User Authentication",
     "Develop secure user authentication system with JWT tokens and role-based access control",
     "BACKLOG", "CRITICAL", "Mike Davis", 16, "auth,security,backend"),
    ("Create Task Management API",
     "Build RESTful API endpoints for CRUD operations on tasks with optimistic locking",
     "IN_PROGRESS", "HIGH", "Emma Wilson", 20, "api,backend,crud"),
    ("Fix Critical Bug in Data Processing",
     "Resolve the issue causing data corruption when processing large datasets",
     "REVIEW", "CRITICAL", "David Lee", 4, "bug,critical,data"),
    ("Write Unit Tests for Services",
     "Implement comprehensive unit tests for all service layer components",
     "TESTING", "MEDIUM", "Lisa Chen", 10, "testing,unit-tests,quality"),
    ("Optimize Database Queries",
     "Improve performance by optimizing slow database queries and adding proper indexes",
     "BACKLOG", "LOW", "Tom Anderson", 6, "performance,database,optimization"),
    ("Implement Real-time Notifications",
     "Add WebSocket support for real-time notifications when tasks are updated",
     "IN_PROGRESS", "MEDIUM", "Anna Martinez", 14, "real-time,websocket,notifications"),
    ("Create Dashboard Analytics",
     "Build interactive dashboard showing task statistics, team performance metrics",
     "REVIEW", "LOW", "James Brown", 18, "dashboard,analytics,charts"),
    ("Mobile App Responsive Design",
     "Ensure the application works perfectly on mobile devices and tablets",
     "TESTING", "MEDIUM", "Rachel Green", 8, "mobile,responsive,css"),
    ("Security Audit and Penetration Testing",
     "Conduct comprehensive security audit and fix any vulnerabilities found",
     "BACKLOG", "CRITICAL", "Security Team", 24, "security,audit,penetration"),
    ("Documentation and User Manual",
     "Create comprehensive documentation and user manual for the application",
     "DONE", "LOW", "Technical Writer", 12, "documentation,manual,help"),
    ("Performance Load Testing",
     "Conduct load testing to ensure application can handle expected user load",
     "IN_PROGRESS", "HIGH", "QA Team", 16, "performance,load-testing,qa"),
    ("Implement Advanced Search",
     "Add advanced search functionality with filters, sorting, and full-text search",
     "REVIEW", "MEDIUM", "Sarah Johnson", 10, "search,filters,frontend"),
    ("Deploy to Production Environment",
     "Deploy the application to production servers and configure monitoring",
     "BACKLOG", "HIGH", "DevOps Team", 8, "deployment,production,monitoring"),
]


def seed_sample_tasks(db_manager: DatabaseManager) -> int:
    """
    Insert the sample tasks into an empty store.

    Returns:
        Number of tasks inserted (0 when the store already has tasks)
    """
    with db_manager.get_session() as session:
        repo = TaskRepository(session)
        if repo.count() > 0:
            logger.info("Skipping sample data, tasks already present")
            return 0

        for title, description, status, priority, assignee, hours, tags in SAMPLE_TASKS:
            task = Task(
                title=title,
                description=description,
                status=status,
                priority=priority,
                assignee=assignee,
                estimated_hours=hours,
                tags=tags,
            )
            task.stamp_created(SAMPLE_ACTOR)
            repo.add(task)

    logger.info(f"Seeded {len(SAMPLE_TASKS)} sample tasks")
    return len(SAMPLE_TASKS)
