import pytest


@pytest.fixture
def story_map():
    """Three backbones over two activities, two personas, all stories MVP."""
    return {
        "activities": [
            {"id": "ACT-001", "name": "Organization"},
            {"id": "ACT-002", "name": "Projects"},
        ],
        "backbones": [
            {"id": "BB-001", "name": "Create org", "activity_id": "ACT-001", "sequence": 1},
            {"id": "BB-002", "name": "Invite members", "activity_id": "ACT-001", "sequence": 2},
            {"id": "BB-003", "name": "Create project", "activity_id": "ACT-002", "sequence": 3},
        ],
        "personas": {
            "P001": {
                "name": "Org admin",
                "role": "admin",
                "stories": [
                    {"id": "ST-001", "text": "I want an org, So that we share work",
                     "backbone_id": "BB-001", "version": "MVP"},
                    {"id": "ST-002", "text": "I want a project, So that work is grouped",
                     "backbone_id": "BB-003", "version": "MVP"},
                ],
            },
            "P002": {
                "name": "Project member",
                "role": "member",
                "stories": [
                    {"id": "ST-004", "text": "I want an invite, So that I can join",
                     "backbone_id": "BB-002", "version": "MVP"},
                ],
            },
        },
    }


@pytest.fixture
def mapped_story_map(story_map):
    """story_map plus a cross-persona story and a renormalized story_mapping."""
    story_map["cross_persona_stories"] = [
        {"id": "ST-005", "text": "I want notifications, So that I stay informed",
         "backbone_id": "BB-002", "version": "MVP", "backbone_x_version_sort": 2},
    ]
    for story_id, sort in (("ST-001", 1), ("ST-002", 1), ("ST-004", 1)):
        for persona in story_map["personas"].values():
            for story in persona["stories"]:
                if story["id"] == story_id:
                    story["backbone_x_version_sort"] = sort
    story_map["story_mapping"] = {
        "ST-001": {"backbone_id": "BB-001", "sequence": 1},
        "ST-002": {"backbone_id": "BB-003", "sequence": 1},
        "ST-004": {"backbone_id": "BB-002", "sequence": 1},
        "ST-005": {"backbone_id": "BB-002", "sequence": 2},
    }
    return story_map
