from __future__ import annotations

import pytest

from sqla_records import InvalidRelationship

from ..conftest import QueryCounter
from ..models import Category, Comment, Post, User


USER_COLUMNS = (
    "users.id AS users__id, users.name AS users__name, users.email AS users__email, "
    "users.active AS users__active, users.age AS users__age, "
    "users.created_at AS users__created_at, users.updated_at AS users__updated_at"
)


def by_name(users: list[User]) -> dict[str, User]:
    return {user.name: user for user in users}


class TestSeparateStrategy:
    def test_has_many_uses_one_in_query(self, queries: QueryCounter) -> None:
        users = by_name(User.includes("posts").get())

        assert queries.sql == [
            "SELECT * FROM users",
            "SELECT * FROM posts WHERE user_id IN (?, ?, ?, ?)",
        ]
        assert queries.statements[1][1] == (1, 2, 3, 4)
        assert sorted(p.title for p in users["alice"].posts) == ["Alice Post 1", "Alice Post 2", "Alice Post 3"]
        assert [p.title for p in users["bob"].posts] == ["Bob Post 1"]
        assert users["charlie"].posts == []
        assert len(queries) == 2

    def test_nested_path_is_one_query_per_level(self, queries: QueryCounter) -> None:
        users = by_name(User.includes("posts.comments").get())

        assert len(queries) == 3
        assert queries.sql[2] == "SELECT * FROM comments WHERE post_id IN (?, ?, ?, ?)"

        alice_posts = {p.id: p for p in users["alice"].posts}
        assert sorted(c.text for c in alice_posts[1].comments) == ["Great post!", "Nice work"]
        assert alice_posts[2].comments == []
        assert [c.text for c in users["bob"].posts[0].comments] == ["Thanks"]
        assert len(queries) == 3

    @pytest.mark.parametrize("extra_users", [0, 3, 12])
    def test_query_count_does_not_depend_on_batch_size(self, queries: QueryCounter, extra_users: int) -> None:
        for idx in range(extra_users):
            user = User.create(name=f"user-{idx}")
            Post.create(title=f"post-{idx}", user_id=user.id)
        queries.reset()

        users = User.includes("posts.comments").get()

        assert len(users) == 4 + extra_users
        assert len(queries) == 3

    def test_preload_forces_separate_for_has_one(self, queries: QueryCounter) -> None:
        users = by_name(User.preload("profile").get())

        assert queries.sql == [
            "SELECT * FROM users",
            "SELECT * FROM profiles WHERE user_id IN (?, ?, ?, ?)",
        ]
        assert users["alice"].profile.bio == "Alice bio"
        assert users["charlie"].profile is None

    def test_belongs_to_collects_distinct_foreign_keys(self, queries: QueryCounter) -> None:
        comments = Comment.preload("author").get()

        assert queries.sql[1] == "SELECT * FROM users WHERE id IN (?, ?, ?)"
        assert {c.id: c.author.name for c in comments} == {1: "bob", 2: "charlie", 3: "alice"}

    def test_empty_parent_batch_issues_no_child_query(self, queries: QueryCounter) -> None:
        assert User.where(id=999).includes("posts.comments").get() == []
        assert len(queries) == 1


class TestJoinStrategy:
    def test_belongs_to_is_joined(self, queries: QueryCounter) -> None:
        posts = Post.includes("author").get()

        assert queries.sql == [f"SELECT posts.*, {USER_COLUMNS} FROM posts LEFT JOIN users ON users.id = posts.user_id"]
        assert {p.title: p.author.name for p in posts} == {
            "Alice Post 1": "alice",
            "Alice Post 2": "alice",
            "Alice Post 3": "alice",
            "Bob Post 1": "bob",
        }
        assert all("users__id" not in p for p in posts)
        assert len(queries) == 1

    def test_has_one_is_joined(self, queries: QueryCounter) -> None:
        users = by_name(User.includes("profile").get())

        assert len(queries) == 1
        assert "LEFT JOIN profiles ON profiles.user_id = users.id" in queries.sql[0]
        assert users["bob"].profile.bio == "Bob bio"
        # a NULL join row still counts as loaded
        assert users["dave"].is_relationship_loaded("profile")
        assert users["dave"].profile is None
        assert len(queries) == 1

    def test_own_columns_are_qualified(self, queries: QueryCounter) -> None:
        posts = Post.where(user_id=1).includes("author").order_by("id", "DESC").limit(2).get()

        assert queries.sql[0].endswith(
            "FROM posts LEFT JOIN users ON users.id = posts.user_id "
            "WHERE posts.user_id = ? ORDER BY posts.id DESC LIMIT 2"
        )
        assert [p.id for p in posts] == [3, 2]

    def test_forced_join_on_has_many_dedupes_parents(self, queries: QueryCounter) -> None:
        users = User.joins("posts").order_by("id").get()

        assert len(queries) == 1
        assert "LEFT JOIN posts ON posts.user_id = users.id" in queries.sql[0]
        assert [u.name for u in users] == ["alice", "bob", "charlie", "dave"]
        assert sorted(p.id for p in users[0].posts) == [1, 2, 3]
        assert users[2].posts == []

    def test_join_nested_under_separate_level(self, queries: QueryCounter) -> None:
        users = by_name(User.includes("posts.author").get())

        assert len(queries) == 2
        assert queries.sql[1] == (
            f"SELECT posts.*, {USER_COLUMNS} FROM posts "
            "LEFT JOIN users ON users.id = posts.user_id WHERE posts.user_id IN (?, ?, ?, ?)"
        )
        assert all(p.author.name == "alice" for p in users["alice"].posts)

    def test_children_of_joined_records_load_separately(self, queries: QueryCounter) -> None:
        comments = Comment.includes("post.comments").get()

        assert len(queries) == 2
        assert queries.sql[1] == "SELECT * FROM comments WHERE post_id IN (?, ?)"
        first = next(c for c in comments if c.id == 1)
        assert first.post.title == "Alice Post 1"
        assert sorted(c.id for c in first.post.comments) == [1, 2]

    def test_self_referential_join_is_aliased(self, queries: QueryCounter) -> None:
        categories = {c.name: c for c in Category.includes("parent", "children").get()}

        assert len(queries) == 2
        assert "LEFT JOIN categories AS categories_parent ON categories_parent.id = categories.parent_id" in queries.sql[0]
        assert categories["root"].parent is None
        assert categories["grandchild"].parent.name == "child_1"
        assert sorted(c.name for c in categories["root"].children) == ["child_1", "child_2"]
        assert categories["child_2"].children == []

    def test_count_keeps_joins_and_skips_separate_loads(self, queries: QueryCounter) -> None:
        assert User.includes("profile", "posts").count() == 4
        assert queries.sql == [
            "SELECT COUNT(DISTINCT users.id) AS aggregate FROM users "
            "LEFT JOIN profiles ON profiles.user_id = users.id"
        ]

    def test_count_of_forced_has_many_join_counts_parents(self, queries: QueryCounter) -> None:
        assert User.joins("posts").count() == 4
        assert User.joins("posts").where({"posts.title": {"like": "Alice%"}}).count() == 1

    def test_terminals_filter_on_joined_table(self, queries: QueryCounter) -> None:
        query = Post.includes("author").where({"users.name": "bob"})

        assert [p.title for p in query.get()] == ["Bob Post 1"]
        assert query.count() == 1
        assert query.exists()
        assert query.pluck("title") == ["Bob Post 1"]
        assert queries.sql[1] == (
            "SELECT COUNT(DISTINCT posts.id) AS aggregate FROM posts "
            "LEFT JOIN users ON users.id = posts.user_id WHERE users.name = ?"
        )
        assert queries.sql[3] == (
            "SELECT posts.title FROM posts LEFT JOIN users ON users.id = posts.user_id WHERE users.name = ?"
        )
        assert not Post.includes("author").where({"users.name": "zed"}).exists()


class TestIncludes:
    def test_list_of_paths(self, queries: QueryCounter) -> None:
        users = User.includes(["posts", "profile"]).get()

        assert len(queries) == 2
        assert all(u.is_relationship_loaded("posts") and u.is_relationship_loaded("profile") for u in users)

    def test_loaded_relationships_do_not_query_again(self, queries: QueryCounter) -> None:
        users = User.includes("posts.comments", "profile").get()
        queries.reset()

        for user in users:
            for post in user.posts:
                _ = post.comments
            _ = user.profile

        assert len(queries) == 0

    def test_first_runs_eager_loads(self, queries: QueryCounter) -> None:
        user = User.where(name="alice").includes("posts").first()

        assert user is not None
        assert len(user.posts) == 3
        assert queries.sql[0] == "SELECT * FROM users WHERE name = ? LIMIT 1"
        assert len(queries) == 2

    def test_invalid_path_fails_before_any_query(self, queries: QueryCounter) -> None:
        with pytest.raises(InvalidRelationship, match="No relationship 'likes' on Post") as exc_info:
            User.includes("posts.likes").get()

        assert exc_info.value.position == 2
        assert len(queries) == 0

    def test_to_dict_with_relationships(self, seed_data: object) -> None:
        user = User.where(id=2).includes("posts", "profile").first()

        assert user is not None
        data = user.to_dict(relationships=True)
        assert data["profile"]["bio"] == "Bob bio"
        assert [p["title"] for p in data["posts"]] == ["Bob Post 1"]
