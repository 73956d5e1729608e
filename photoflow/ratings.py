from typing import Iterable, Union

from photoflow.classes import DisplayRating
from photoflow.constants import Constants
from photoflow.exceptions import RatingValueError


def _mean(values: list[int]) -> Union[float, None]:
    if not values:
        return None
    return sum(values) / len(values)


def validate_rating_value(value) -> int:
    # bool is an int subclass, but True is not a rating
    if isinstance(value, bool) or not isinstance(value, int):
        raise RatingValueError(f"Rating must be an integer, got {value!r}")
    if not Constants.MIN_RATING <= value <= Constants.MAX_RATING:
        raise RatingValueError(
            f"Rating must be between {Constants.MIN_RATING} and {Constants.MAX_RATING}"
        )
    return value


def average_rating(ratings: Iterable[tuple[int, int]]) -> Union[float, None]:
    return _mean([value for _, value in ratings])


def compute_display_rating(
    ratings: Iterable[tuple[int, int]], viewer_id: Union[int, None] = None
) -> DisplayRating:
    """
    Picks the rating a given viewer sees for a photo:

    - nobody rated it: no value
    - the viewer rated it: their own rating
    - the viewer didn't rate it: the mean of everyone else's ratings, or no
      value if there are none
    - anonymous viewer: the mean of all ratings

    `count` is always the total number of ratings.
    """
    ratings = list(ratings)
    count = len(ratings)

    if not ratings:
        return DisplayRating(value=None, count=0)

    if viewer_id is None:
        return DisplayRating(value=average_rating(ratings), count=count)

    own_rating = next((value for user_id, value in ratings if user_id == viewer_id), None)
    if own_rating is not None:
        return DisplayRating(value=float(own_rating), count=count, own_rating=own_rating)

    others = [value for user_id, value in ratings if user_id != viewer_id]
    return DisplayRating(value=_mean(others), count=count)
