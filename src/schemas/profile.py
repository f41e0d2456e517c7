"""Profile payloads for the signed-in user."""
from schemas.favorite import Favorite
from schemas.review import Review
from schemas.user import UserRecord


class UserProfile(UserRecord):
    """`GET /users/profile`: the user record plus activity counts."""

    review_count: int = 0
    favorite_count: int = 0


class UserProfileDetails(UserProfile):
    """`GET /users/profile/details`, which also embeds the reviews and favorites."""

    reviews: list[Review] = []
    favorites: list[Favorite] = []
