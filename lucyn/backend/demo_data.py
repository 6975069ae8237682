"""Placeholder analytics payloads and local demo seeding.

The dashboard endpoints serve these until the analytics jobs write real
numbers per organization.
"""

import copy
import logging
from datetime import datetime, timezone

import database as db

logger = logging.getLogger(__name__)

DEMO_EMAIL = "demo@lucyn.dev"

DEMO_OVERVIEW = {
    "healthScore": 78,
    "healthTrend": "improving",
    "highlights": [
        "PR velocity increased by 15% this sprint",
        "Code review turnaround improved to 4 hours",
        "Zero critical bugs in production this week",
    ],
    "concerns": [
        "One team member showing signs of burnout",
        "Technical debt in auth module increasing",
    ],
    "velocity": {
        "prsPerWeek": {"current": 24, "previous": 21, "trend": 14},
        "commitsPerDay": {"current": 22, "previous": 25, "trend": -12},
        "avgMergeTime": {"current": 4.2, "previous": 5.1, "trend": -18},
        "reviewTurnaround": {"current": 4, "previous": 8, "trend": -50},
    },
    "team": {
        "total": 8,
        "active": 7,
        "balanced": 5,
        "overloaded": 1,
        "underutilized": 1,
    },
    "recentActivity": [
        {"type": "pr_merged", "user": "alex", "repo": "frontend", "title": "Add user settings page", "time": "2 hours ago"},
        {"type": "commit", "user": "sarah", "repo": "api", "title": "Fix auth token refresh", "time": "3 hours ago"},
        {"type": "review", "user": "mike", "repo": "frontend", "title": "Reviewed: Dashboard charts", "time": "4 hours ago"},
        {"type": "pr_opened", "user": "emily", "repo": "api", "title": "Add rate limiting", "time": "5 hours ago"},
    ],
}

DEMO_DEVELOPERS = [
    {
        "id": "1",
        "name": "Alex Johnson",
        "email": "alex@company.com",
        "role": "Senior Engineer",
        "avatarUrl": None,
        "githubUsername": "alexj",
        "stats": {"commits": 45, "prs": 12, "reviews": 28},
        "workload": 85,
        "status": "overloaded",
        "skills": ["TypeScript", "React", "Node.js", "PostgreSQL"],
        "profile": {
            "codeQualityScore": 8.5,
            "velocityScore": 9.0,
            "collaborationScore": 7.5,
            "strengths": ["Fast delivery", "Clean code"],
            "areasForGrowth": ["Code reviews", "Documentation"],
        },
    },
    {
        "id": "2",
        "name": "Sarah Chen",
        "email": "sarah@company.com",
        "role": "Engineer",
        "avatarUrl": None,
        "githubUsername": "sarahc",
        "stats": {"commits": 32, "prs": 8, "reviews": 15},
        "workload": 60,
        "status": "balanced",
        "skills": ["Python", "Django", "PostgreSQL", "Redis"],
        "profile": {
            "codeQualityScore": 8.0,
            "velocityScore": 7.5,
            "collaborationScore": 8.5,
            "strengths": ["Backend architecture", "Helpful reviews"],
            "areasForGrowth": ["Frontend skills"],
        },
    },
]

_INSIGHTS = [
    {
        "id": "1",
        "type": "velocity",
        "severity": "info",
        "title": "Velocity increased by 15% this sprint",
        "description": "Your team shipped more story points than the previous sprint.",
        "recommendation": "Consider documenting what worked well.",
    },
    {
        "id": "2",
        "type": "risk",
        "severity": "warning",
        "title": "Potential burnout risk detected",
        "description": "Alex has been working outside normal hours for 2 weeks.",
        "recommendation": "Consider redistributing tasks.",
    },
]


def overview() -> dict:
    return copy.deepcopy(DEMO_OVERVIEW)


def developers() -> list[dict]:
    return copy.deepcopy(DEMO_DEVELOPERS)


def insights() -> list[dict]:
    """Insights stamped with the current time, unread and not dismissed."""
    now = datetime.now(timezone.utc).isoformat()
    return [
        {**item, "createdAt": now, "isRead": False, "isDismissed": False}
        for item in _INSIGHTS
    ]


async def seed_demo_data() -> dict:
    """Create a demo organization, admin user and repositories. Safe to re-run."""
    user = await db.get_user_by_email(DEMO_EMAIL)
    if user:
        return user

    user, org = await db.create_organization_with_admin(
        org_name="Acme Engineering",
        slug="acme-engineering",
        email=DEMO_EMAIL,
        name="Demo Manager",
    )

    repos = [
        ("1001", "frontend", "acme/frontend", "Customer dashboard", "TypeScript"),
        ("1002", "api", "acme/api", "Public REST API", "Python"),
        ("1003", "infra", "acme/infra", "Terraform modules", "HCL"),
    ]
    for github_id, name, full_name, description, language in repos:
        await db.upsert_repository(
            organization_id=org["id"],
            github_id=github_id,
            name=name,
            full_name=full_name,
            description=description,
            language=language,
        )

    seeded = await db.list_repositories(org["id"])
    by_name = {r["name"]: r for r in seeded}
    await db.mark_scan(by_name["frontend"]["id"])
    await db.mark_scan(by_name["frontend"]["id"], completed=True)
    await db.mark_scan(by_name["api"]["id"])

    logger.info("Demo data seeded successfully")
    return user
