"""Per-agency task context: cache behaviour and prompt formatting."""

from seohub.crud import crud
from seohub.services import task_context
from seohub.services.task_context import _ContextCache


def test_cache_expires_entries():
    cache = _ContextCache(ttl=-1)
    cache.set(1, {"a": 1})
    assert cache.get(1) is None
    assert len(cache) == 0


def test_cache_evicts_least_recently_used():
    cache = _ContextCache(max_entries=2)
    cache.set(1, {"n": 1})
    cache.set(2, {"n": 2})
    cache.get(1)
    cache.set(3, {"n": 3})

    assert cache.get(2) is None
    assert cache.get(1) == {"n": 1}
    assert cache.get(3) == {"n": 3}


def test_context_reflects_orders_and_onboarding(db_session, member_user):
    done = crud.create_order(
        db_session, user=member_user, task_type="blog", title="Guide", description="x", keywords=["used trucks", "f-150"]
    )
    done.status = "completed"
    done.page_title = "Used Truck Guide"
    done.content_url = "https://acmeford.test/blog/trucks"
    # Completed without a published title: counted, not listed.
    untitled = crud.create_order(db_session, user=member_user, task_type="gbp", title="Post", description="x")
    untitled.status = "completed"
    crud.create_order(db_session, user=member_user, task_type="page", title="Open", description="x")
    db_session.commit()

    context = task_context.get_task_context(db_session, member_user.agency_id)

    assert [t["title"] for t in context["completedTasks"]] == ["Used Truck Guide"]
    assert context["activeTaskTypes"] == ["page"]
    assert context["recentKeywords"] == ["used trucks", "f-150"]
    assert context["packageInfo"] == {"type": "GOLD", "progress": 4, "remainingTasks": 47}
    assert context["dealershipInfo"] is None

    text = task_context.format_task_context(context)
    assert "- Used Truck Guide (blog) - Published" in text
    assert "- page content" in text
    assert "- Remaining tasks: 47" in text


def test_cached_context_is_reused_until_invalidated(db_session, member_user):
    first = task_context.get_cached_task_context(db_session, member_user.agency_id)
    crud.create_order(db_session, user=member_user, task_type="blog", title="New", description="x")

    assert task_context.get_cached_task_context(db_session, member_user.agency_id) is first

    task_context.invalidate(member_user.agency_id)
    refreshed = task_context.get_cached_task_context(db_session, member_user.agency_id)
    assert refreshed["activeTaskTypes"] == ["blog"]


def test_enhanced_prompt_includes_dealership_block():
    context = {
        "completedTasks": [],
        "activeTaskTypes": [],
        "recentKeywords": [],
        "packageInfo": {"type": "PLATINUM", "progress": 10, "remainingTasks": 69},
        "dealershipInfo": {
            "businessName": "Acme Ford",
            "location": "Austin, TX",
            "mainBrand": "Ford",
            "targetCities": ["Austin", "Round Rock"],
            "targetModels": [],
        },
    }

    prompt = task_context.build_enhanced_system_prompt(context, "Keep answers short.")

    assert prompt.startswith("You are Rylie")
    assert "- Business: Acme Ford" in prompt
    assert "- Target Cities: Austin, Round Rock" in prompt
    assert "Target Models" not in prompt
    assert "(69 tasks remaining)" in prompt
    assert prompt.endswith("Keep answers short.\n")
