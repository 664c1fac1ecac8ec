from __future__ import annotations

import pytest

from sqla_records import InvalidRelationship
from sqla_records.eager import EagerLoadPlan, parse_path

from ..models import Category, Comment, Post, User


class TestParsePath:
    def test_single_segment(self) -> None:
        result = parse_path(User, "posts")

        assert [m.name for m in result] == ["posts"]

    def test_three_segment_path(self) -> None:
        result = parse_path(User, "posts.comments.author")

        assert [m.name for m in result] == ["posts", "comments", "author"]
        assert [m.owner for m in result] == ["User", "Post", "Comment"]

    def test_invalid_segment_names_owner_and_position(self) -> None:
        with pytest.raises(InvalidRelationship, match="No relationship 'nonexistent' on Post") as exc_info:
            parse_path(User, "posts.nonexistent.author")

        assert exc_info.value.segment == "nonexistent"
        assert exc_info.value.position == 2
        assert exc_info.value.model is Post
        assert exc_info.value.path == "posts.nonexistent.author"

    def test_invalid_first_segment(self) -> None:
        with pytest.raises(InvalidRelationship, match="segment 1 of 'nonexistent.posts'"):
            parse_path(User, "nonexistent.posts")

    @pytest.mark.parametrize("path", ["", "posts.", ".posts", "posts..comments"])
    def test_empty_segment(self, path: str) -> None:
        with pytest.raises(InvalidRelationship):
            parse_path(User, path)

    def test_column_is_not_a_relationship(self) -> None:
        with pytest.raises(InvalidRelationship):
            parse_path(Comment, "post_id")

    def test_self_referential_path(self) -> None:
        result = parse_path(Category, "children.children.parent")

        assert [m.target for m in result] == ["Category", "Category", "Category"]


class TestEagerLoadPlan:
    def test_paths_share_prefixes(self) -> None:
        plan = EagerLoadPlan(User)
        plan.add("posts.comments")
        plan.add("posts.author")
        plan.add("profile")

        assert list(plan.nodes) == ["posts", "profile"]
        assert list(plan.nodes["posts"].children.nodes) == ["comments", "author"]
        assert plan.nodes["posts"].target is Post

    def test_invalid_path_registers_nothing(self) -> None:
        plan = EagerLoadPlan(User)

        with pytest.raises(InvalidRelationship):
            plan.add("posts.comments.nope")

        assert not plan

    def test_explicit_strategy_applies_to_every_segment(self) -> None:
        plan = EagerLoadPlan(User)
        plan.add("posts.comments", "join")
        plan.add("posts")

        posts = plan.nodes["posts"]
        assert posts.strategy == "join"
        assert posts.children.nodes["comments"].strategy == "join"

    def test_alias_avoids_tables_already_in_the_query(self) -> None:
        plan = EagerLoadPlan(Category)
        plan.add("parent")
        plan.add("children")

        assert plan.nodes["parent"].alias == "categories_parent"
        assert plan.nodes["children"].alias == "categories_children"

    def test_join_clause(self) -> None:
        plan = EagerLoadPlan(Post)
        plan.add("author")
        plan.add("comments")

        author = plan.nodes["author"].join_clause("posts")
        comments = plan.nodes["comments"].join_clause("posts")

        assert (author.kind, author.target, author.on) == ("left", "users", "users.id = posts.user_id")
        assert comments.on == "comments.post_id = posts.id"

    def test_self_join_clause_uses_alias(self) -> None:
        plan = EagerLoadPlan(Category)
        plan.add("parent")

        clause = plan.nodes["parent"].join_clause("categories")

        assert clause.target == "categories AS categories_parent"
        assert clause.on == "categories_parent.id = categories.parent_id"

    def test_query_methods_validate_immediately(self) -> None:
        with pytest.raises(InvalidRelationship):
            User.includes("posts", "posts.bogus")

        with pytest.raises(InvalidRelationship):
            Post.joins(["author", "nope"])

        with pytest.raises(InvalidRelationship):
            Post.preload("comments.post.nope")
