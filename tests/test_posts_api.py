"""Tests for the posts endpoints."""
import os

import pytest
from starlette.datastructures import UploadFile

from images import MAX_IMAGE_SIZE, LocalImageStore
from models import Role

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def new_post(**overrides):
    body = {"title": "My first post", "content": "This is the body of the post."}
    body.update(overrides)
    return body


# =============================================================================
# Listing
# =============================================================================


@pytest.fixture
def listing(author, other_author, make_post, make_comment, reader):
    published = make_post(author, title="Published one", tags=["python"])
    draft = make_post(author, title="Author draft", published=False)
    foreign_draft = make_post(other_author, title="Foreign draft", published=False)
    make_comment(reader, published, approved=True)
    make_comment(reader, published, approved=False)
    return {"published": published, "draft": draft, "foreign_draft": foreign_draft}


class TestListPosts:
    def ids(self, response):
        assert response.status_code == 200
        return {post["id"] for post in response.json()["posts"]}

    def test_anonymous_sees_published_only(self, client, listing):
        assert self.ids(client.get("/posts")) == {listing["published"]}

    def test_reader_sees_published_only(self, client, listing, reader, auth_headers):
        assert self.ids(client.get("/posts", headers=auth_headers(reader))) == {listing["published"]}

    def test_author_sees_own_drafts(self, client, listing, author, auth_headers):
        assert self.ids(client.get("/posts", headers=auth_headers(author))) == {
            listing["published"], listing["draft"]}

    def test_admin_sees_everything(self, client, listing, admin, auth_headers):
        assert self.ids(client.get("/posts", headers=auth_headers(admin))) == set(listing.values())

    def test_comment_count_counts_approved(self, client, listing):
        post = client.get("/posts").json()["posts"][0]
        assert post["commentCount"] == 1
        assert post["tags"] == ["python"]
        assert post["author"]["name"] == "John Author"

    def test_pagination_block(self, client, author, make_post):
        for n in range(5):
            make_post(author, title=f"Post number {n}")
        body = client.get("/posts", params={"page": 2, "limit": 2}).json()
        assert [p["title"] for p in body["posts"]] == ["Post number 2", "Post number 1"]
        assert body["pagination"] == {
            "currentPage": 2, "totalPages": 3, "totalItems": 5, "limit": 2,
            "hasNext": True, "hasPrev": True,
        }

    def test_search_and_tag(self, client, listing):
        assert self.ids(client.get("/posts", params={"search": "PUBLISHED"})) == {listing["published"]}
        assert self.ids(client.get("/posts", params={"tag": "python"})) == {listing["published"]}
        assert self.ids(client.get("/posts", params={"tag": "rust"})) == set()

    def test_junk_paging_uses_defaults(self, client, listing):
        body = client.get("/posts", params={"page": "abc", "limit": "-3"}).json()
        assert body["pagination"]["currentPage"] == 1
        assert body["pagination"]["limit"] == 10

    def test_featured(self, client, author, make_post):
        for n in range(4):
            make_post(author, title=f"Featured {n}")
        make_post(author, title="Hidden draft", published=False)
        posts = client.get("/posts/featured/posts").json()["posts"]
        assert [p["title"] for p in posts] == ["Featured 3", "Featured 2", "Featured 1"]

    def test_my_posts(self, client, listing, author, auth_headers):
        body = client.get("/posts/user/my-posts", headers=auth_headers(author)).json()
        assert {p["id"] for p in body["posts"]} == {listing["published"], listing["draft"]}

    def test_my_posts_requires_author(self, client, reader, auth_headers):
        assert client.get("/posts/user/my-posts", headers=auth_headers(reader)).status_code == 403
        assert client.get("/posts/user/my-posts").status_code == 401


# =============================================================================
# Single post
# =============================================================================


class TestReadPost:
    def test_unpublished_is_404_for_anonymous(self, client, listing):
        response = client.get(f"/posts/{listing['draft']}")
        assert response.status_code == 404
        assert response.json()["error"] == "Post not found"

    def test_unpublished_is_404_for_reader(self, client, listing, reader, auth_headers):
        response = client.get(f"/posts/{listing['draft']}", headers=auth_headers(reader))
        assert response.status_code == 404

    def test_owner_reads_draft(self, client, listing, author, auth_headers):
        response = client.get(f"/posts/{listing['draft']}", headers=auth_headers(author))
        assert response.status_code == 200

    def test_missing_post(self, client):
        assert client.get("/posts/12345").status_code == 404

    def test_comments_are_filtered(self, client, listing, reader, auth_headers):
        anonymous = client.get(f"/posts/{listing['published']}").json()["post"]
        assert len(anonymous["comments"]) == 1
        assert all(c["approved"] for c in anonymous["comments"])

        own = client.get(f"/posts/{listing['published']}", headers=auth_headers(reader)).json()
        assert len(own["post"]["comments"]) == 2


# =============================================================================
# Writes
# =============================================================================


class TestCreatePost:
    def test_author_post_starts_unpublished(self, client, author, auth_headers):
        response = client.post("/posts", json=new_post(tags="tech, video"),
                               headers=auth_headers(author))
        assert response.status_code == 201
        post = response.json()["post"]
        assert post["published"] is False
        assert post["authorId"] == author.id
        assert post["tags"] == ["tech", "video"]

    def test_admin_post_is_published(self, client, admin, auth_headers):
        response = client.post("/posts", json=new_post(), headers=auth_headers(admin))
        assert response.json()["post"]["published"] is True

    def test_reader_cannot_post(self, client, reader, auth_headers):
        response = client.post("/posts", json=new_post(), headers=auth_headers(reader))
        assert response.status_code == 403

    def test_anonymous_cannot_post(self, client):
        assert client.post("/posts", json=new_post()).status_code == 401

    @pytest.mark.parametrize("body,error", [
        ({"title": "Hi", "content": "Long enough content"}, "Title must be at least 3 characters long"),
        ({"title": "Fine title", "content": "short"}, "Content must be at least 10 characters long"),
        ({"title": "Fine title"}, "Title and content are required"),
    ])
    def test_validation(self, client, author, auth_headers, body, error):
        response = client.post("/posts", json=body, headers=auth_headers(author))
        assert response.status_code == 400
        assert response.json()["error"] == error

    def test_tags_as_json_list(self, client, author, auth_headers):
        response = client.post("/posts", json=new_post(tags=["a", "b", "a"]),
                               headers=auth_headers(author))
        assert response.json()["post"]["tags"] == ["a", "b"]

    def test_category(self, client, author, auth_headers, make_category):
        category = make_category("Technology")
        response = client.post("/posts", json=new_post(categoryId=category.id),
                               headers=auth_headers(author))
        assert response.json()["post"]["category"]["slug"] == "technology"

    def test_unknown_category(self, client, author, auth_headers):
        response = client.post("/posts", json=new_post(categoryId=999),
                               headers=auth_headers(author))
        assert response.status_code == 400

    def test_multipart_with_image(self, client, author, auth_headers, settings):
        response = client.post(
            "/posts",
            data={"title": "Picture post", "content": "A post that carries an image",
                  "tags": '["photo", "travel"]'},
            files={"postsImage": ("photo.png", PNG, "image/png")},
            headers=auth_headers(author),
        )
        assert response.status_code == 201
        post = response.json()["post"]
        assert post["tags"] == ["photo", "travel"]
        assert post["image"].startswith("/uploads/")
        stored = os.path.join(settings.upload_dir, os.path.basename(post["image"]))
        assert os.path.exists(stored)

    def test_multipart_repeated_tags(self, client, author, auth_headers):
        response = client.post(
            "/posts",
            data={"title": "Form post", "content": "Submitted from a form", "tags": ["x", "y"]},
            headers=auth_headers(author),
        )
        assert response.json()["post"]["tags"] == ["x", "y"]

    def test_rejects_non_image(self, client, author, auth_headers):
        response = client.post(
            "/posts",
            data={"title": "Bad upload", "content": "This has a text attachment"},
            files={"postsImage": ("notes.txt", b"hello", "text/plain")},
            headers=auth_headers(author),
        )
        assert response.status_code == 400


    def test_oversized_image_is_read_only_up_to_the_limit(self, client, author, auth_headers,
                                                          monkeypatch):
        read_sizes = []
        real_read = UploadFile.read

        async def recording_read(self, size=-1):
            read_sizes.append(size)
            return await real_read(self, size)

        stored = []
        monkeypatch.setattr(UploadFile, "read", recording_read)
        monkeypatch.setattr(LocalImageStore, "store",
                            lambda self, *args, **kwargs: stored.append(args))

        response = client.post(
            "/posts",
            data={"title": "Huge picture", "content": "A post with a far too large image"},
            files={"postsImage": ("big.png", PNG + b"\x00" * MAX_IMAGE_SIZE, "image/png")},
            headers=auth_headers(author),
        )
        assert response.status_code == 400
        assert response.json()["error"] == "File too large"
        assert read_sizes == [MAX_IMAGE_SIZE + 1]
        assert stored == []


class TestUpdatePost:
    def test_partial_update_keeps_other_fields(self, client, author, auth_headers, make_post):
        post_id = make_post(author, title="Original title", tags=["keep"])
        response = client.put(f"/posts/{post_id}", json={"content": "Brand new content here"},
                              headers=auth_headers(author))
        assert response.status_code == 200
        post = response.json()["post"]
        assert post["title"] == "Original title"
        assert post["content"] == "Brand new content here"
        assert post["tags"] == ["keep"]

    def test_publish_only(self, client, author, auth_headers, make_post):
        post_id = make_post(author, published=False)
        response = client.put(f"/posts/{post_id}", json={"published": "true"},
                              headers=auth_headers(author))
        assert response.json()["post"]["published"] is True
        assert client.get(f"/posts/{post_id}").status_code == 200

    def test_replace_tags(self, client, author, auth_headers, make_post):
        post_id = make_post(author, tags=["a", "b"])
        response = client.put(f"/posts/{post_id}", json={"tags": "b, c"},
                              headers=auth_headers(author))
        assert response.json()["post"]["tags"] == ["b", "c"]

    def test_author_id_never_changes(self, client, author, admin, auth_headers, make_post):
        post_id = make_post(author)
        response = client.put(f"/posts/{post_id}", json={"title": "Edited by admin",
                                                         "authorId": admin.id},
                              headers=auth_headers(admin))
        assert response.status_code == 200
        assert response.json()["post"]["authorId"] == author.id

    def test_non_owner_forbidden(self, client, author, other_author, auth_headers, make_post):
        post_id = make_post(author)
        response = client.put(f"/posts/{post_id}", json={"title": "Hijacked"},
                              headers=auth_headers(other_author))
        assert response.status_code == 403

    def test_missing(self, client, author, auth_headers):
        response = client.put("/posts/999", json={"title": "Nothing"}, headers=auth_headers(author))
        assert response.status_code == 404

    def test_image_replacement_removes_old_file(self, client, author, auth_headers, settings):
        created = client.post(
            "/posts",
            data={"title": "Picture post", "content": "A post that carries an image"},
            files={"postsImage": ("one.png", PNG, "image/png")},
            headers=auth_headers(author),
        ).json()["post"]
        updated = client.put(
            f"/posts/{created['id']}",
            data={"title": "Picture post v2"},
            files={"postsImage": ("two.png", PNG, "image/png")},
            headers=auth_headers(author),
        ).json()["post"]

        assert updated["image"] != created["image"]
        old_file = os.path.join(settings.upload_dir, os.path.basename(created["image"]))
        new_file = os.path.join(settings.upload_dir, os.path.basename(updated["image"]))
        assert not os.path.exists(old_file)
        assert os.path.exists(new_file)


class TestDeletePost:
    def test_owner_deletes_post_and_comments(self, client, author, reader, auth_headers,
                                             make_post, make_comment):
        post_id = make_post(author)
        comment_id = make_comment(reader, post_id)
        response = client.delete(f"/posts/{post_id}", headers=auth_headers(author))
        assert response.status_code == 200
        assert response.json()["message"] == "Post deleted successfully"
        assert client.get(f"/posts/{post_id}").status_code == 404
        assert client.get(f"/comments/{comment_id}").status_code == 404

    def test_admin_deletes_any(self, client, author, admin, auth_headers, make_post):
        post_id = make_post(author)
        assert client.delete(f"/posts/{post_id}", headers=auth_headers(admin)).status_code == 200

    def test_reader_forbidden(self, client, author, reader, auth_headers, make_post):
        post_id = make_post(author)
        assert client.delete(f"/posts/{post_id}", headers=auth_headers(reader)).status_code == 403

    def test_missing(self, client, admin, auth_headers):
        assert client.delete("/posts/999", headers=auth_headers(admin)).status_code == 404


def test_demoted_author_keeps_ownership(client, make_user, auth_headers, make_post):
    writer = make_user(Role.READER)
    post_id = make_post(writer, published=False)
    response = client.put(f"/posts/{post_id}", json={"title": "Still mine"},
                          headers=auth_headers(writer))
    assert response.status_code == 200


class TestStaleToken:
    def test_public_list_ignores_invalid_token(self, client, listing):
        response = client.get("/posts", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 200
        assert {p["id"] for p in response.json()["posts"]} == {listing["published"]}

    def test_cookie_signed_with_old_key(self, client, listing, author):
        from jose import jwt

        stale = jwt.encode({"sub": str(author.id)}, "rotated-away", algorithm="HS256")
        client.cookies.set("access_token", stale)
        assert client.get(f"/posts/{listing['published']}").status_code == 200
        assert client.get(f"/posts/{listing['draft']}").status_code == 404

    def test_token_still_required_for_writes(self, client):
        response = client.post("/posts", json=new_post(),
                               headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401
        assert response.json()["error"] == "Invalid token"
