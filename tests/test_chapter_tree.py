"""Tests for building and reading the chapter tree."""

import pytest

from storytree.core.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from storytree.models import Story, StorySettings
from storytree.services import NotificationEvent

from .conftest import OWNER, STORY_SLUG


async def test_branch_scenario(core, root):
    branch_a = await core.create_child_chapter(STORY_SLUG, root.slug, OWNER, "Branch A", "A")
    branch_b = await core.create_child_chapter(STORY_SLUG, root.slug, OWNER, "Branch B", "B")

    assert root.depth == 0
    assert root.ancestor_slugs == []
    assert root.branch_index == 1
    assert (branch_a.branch_index, branch_a.depth) == (1, 1)
    assert (branch_b.branch_index, branch_b.depth) == (2, 1)
    assert branch_a.ancestor_slugs == [root.slug]

    intro = await core.get_chapter(root.slug)
    assert intro.stats.child_branches == 2


async def test_second_root_conflicts(core, root):
    with pytest.raises(ConflictError) as exc_info:
        await core.create_root_chapter(STORY_SLUG, OWNER, "Another Intro", "...")
    assert exc_info.value.code == "ROOT_CHAPTER_EXISTS"
    assert (await core.get_root_chapter(STORY_SLUG)).slug == root.slug


async def test_only_creator_writes_root(core, story):
    with pytest.raises(ForbiddenError):
        await core.create_root_chapter(STORY_SLUG, "someone-else", "Intro", "...")
    assert await core.get_root_chapter(STORY_SLUG) is None


async def test_root_for_missing_story(core):
    with pytest.raises(NotFoundError) as exc_info:
        await core.create_root_chapter("nope", OWNER, "Intro", "...")
    assert exc_info.value.code == "STORY_NOT_FOUND"


async def test_depth_and_ancestors_follow_parent(core, root):
    a = await core.create_child_chapter(STORY_SLUG, root.slug, OWNER, "A", "a")
    aa = await core.create_child_chapter(STORY_SLUG, a.slug, OWNER, "AA", "aa")
    aaa = await core.create_child_chapter(STORY_SLUG, aa.slug, OWNER, "AAA", "aaa", is_ending=True)

    assert aaa.depth == aa.depth + 1 == 3
    assert aaa.ancestor_slugs == aa.ancestor_slugs + [aa.slug]
    assert aaa.is_ending
    ancestors = await core.get_ancestors(aaa.slug)
    assert [c.slug for c in ancestors] == [root.slug, a.slug, aa.slug]
    # every level restarts its own branch sequence
    assert a.branch_index == aa.branch_index == aaa.branch_index == 1


async def test_details_siblings_and_tree(core, root):
    a = await core.create_child_chapter(STORY_SLUG, root.slug, OWNER, "A", "a")
    b = await core.create_child_chapter(STORY_SLUG, root.slug, OWNER, "B", "b")
    c = await core.create_child_chapter(STORY_SLUG, root.slug, OWNER, "C", "c")

    details = await core.get_chapter_details(root.slug)
    assert [ch.slug for ch in details.children] == [a.slug, b.slug, c.slug]
    assert details.ancestors == []

    siblings = await core.get_siblings(b.slug)
    assert [ch.slug for ch in siblings] == [a.slug, c.slug]

    tree = await core.get_chapter_tree(STORY_SLUG)
    assert tree.chapter.slug == root.slug
    assert [n.chapter.branch_index for n in tree.children] == [1, 2, 3]


async def test_chapters_by_author(core, root, members):
    await core.create_child_chapter(STORY_SLUG, root.slug, "coauthor-1", "Side", "s")
    mine = await core.get_chapters_by_author("coauthor-1")
    assert [c.title for c in mine] == ["Side"]
    assert [c.slug for c in await core.get_chapters_by_author(OWNER, STORY_SLUG)] == [root.slug]


async def test_missing_parent(core, root):
    with pytest.raises(NotFoundError) as exc_info:
        await core.create_child_chapter(STORY_SLUG, "ghost", OWNER, "A", "a")
    assert exc_info.value.code == "PARENT_CHAPTER_NOT_FOUND"


async def test_parent_from_other_story(core, root):
    await core.create_story(Story(slug="other", title="Other", creator_id=OWNER))
    other_root = await core.create_root_chapter("other", OWNER, "Elsewhere", "...")
    with pytest.raises(BadRequestError) as exc_info:
        await core.create_child_chapter(STORY_SLUG, other_root.slug, OWNER, "A", "a")
    assert exc_info.value.code == "INVALID_PARENT_CHAPTER"
    assert (await core.get_chapter(root.slug)).stats.child_branches == 0


async def test_branching_disabled(core):
    await core.create_story(
        Story(
            slug="linear",
            title="Linear",
            creator_id=OWNER,
            settings=StorySettings(allow_branching=False),
        )
    )
    root = await core.create_root_chapter("linear", OWNER, "Start", "...")
    with pytest.raises(BadRequestError) as exc_info:
        await core.create_child_chapter("linear", root.slug, OWNER, "Next", "...")
    assert exc_info.value.code == "BRANCHING_DISABLED"


async def test_writers_without_approval_rights_must_use_pull_requests(core, root, members):
    for user_id in ("contributor-1", "reviewer-1", "stranger"):
        with pytest.raises(ForbiddenError) as exc_info:
            await core.create_child_chapter(STORY_SLUG, root.slug, user_id, "Mine", "...")
        assert exc_info.value.code == "PR_REQUIRED"
    assert (await core.get_chapter(root.slug)).stats.child_branches == 0


async def test_approvers_publish_directly(core, root, members):
    chapter = await core.create_child_chapter(
        STORY_SLUG, root.slug, "moderator-1", "Moderated", "..."
    )
    assert chapter.author_id == "moderator-1"
    assert chapter.parent_chapter_slug == root.slug


async def test_open_story_lets_writers_publish_directly(core, add_member):
    await core.create_story(
        Story(
            slug="open-story",
            title="Open",
            creator_id=OWNER,
            settings=StorySettings(require_approval=False),
        )
    )
    root = await core.create_root_chapter("open-story", OWNER, "Start", "...")
    await add_member("writer-1", "contributor", story_slug="open-story")
    await add_member("critic-1", "reviewer", story_slug="open-story")

    chapter = await core.create_child_chapter("open-story", root.slug, "writer-1", "Mine", "...")
    assert chapter.branch_index == 1

    with pytest.raises(ForbiddenError) as exc_info:
        await core.create_child_chapter("open-story", root.slug, "critic-1", "Notes", "...")
    assert exc_info.value.code == "PR_REQUIRED"


async def test_new_branch_notifies_parent_author(core, root, members, notifier):
    notifier.sent.clear()
    chapter = await core.create_child_chapter(STORY_SLUG, root.slug, "coauthor-1", "Twist", "!")
    events = [(event, payload["recipient_id"]) for event, payload in notifier.sent]
    assert events == [(NotificationEvent.NEW_BRANCH, OWNER)]
    assert notifier.sent[0][1]["chapter_slug"] == chapter.slug


async def test_own_branch_sends_no_notification(core, root, notifier):
    notifier.sent.clear()
    await core.create_child_chapter(STORY_SLUG, root.slug, OWNER, "Mine", "...")
    assert notifier.sent == []
