"""Hypothesis strategies for property testing.

Provides reusable composite strategies for generating deep links, both
well-formed and deliberately broken in exactly one way.
"""

from urllib.parse import urlencode

from hypothesis import strategies as st

from src.gateway.shared.auth.deep_link import (
    ALLOWED_DEEP_LINK_PATHS,
    ALLOWED_QUERY_PARAMS,
    DEEP_LINK_HOST,
    DEEP_LINK_SCHEME,
    MAX_URL_LENGTH,
)

URL_SAFE_ALPHABET = (
    "abcdefghijklmnopqrstuvwxyz" "ABCDEFGHIJKLMNOPQRSTUVWXYZ" "0123456789-_"
)


def token_values():
    """Opaque URL-safe token strings, as issued by the identity provider."""
    return st.text(alphabet=URL_SAFE_ALPHABET, min_size=1, max_size=64)


def case_variants(word: str):
    """Every upper/lower-case spelling of word."""
    return st.lists(st.booleans(), min_size=len(word), max_size=len(word)).map(
        lambda flags: "".join(
            c.upper() if upper else c for c, upper in zip(word, flags, strict=True)
        )
    )


@st.composite
def query_params(draw, min_size=0):
    """Distinct allowlisted parameter names with token values.

    Returns:
        list[tuple[str, str]]: Ordered (name, value) pairs
    """
    names = draw(
        st.lists(
            st.sampled_from(ALLOWED_QUERY_PARAMS),
            min_size=min_size,
            max_size=len(ALLOWED_QUERY_PARAMS),
            unique=True,
        )
    )
    return [(name, draw(token_values())) for name in names]


def build_link(
    params: list[tuple[str, str]],
    path: str = "/callback",
    host: str = DEEP_LINK_HOST,
    scheme: str = DEEP_LINK_SCHEME,
) -> str:
    url = f"{scheme}://{host}{path}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return url


@st.composite
def valid_deep_link(draw):
    """Deep link that passes every structural check.

    Returns:
        str: todoapp://auth/<allowed path>?<distinct allowed params>
    """
    path = draw(st.sampled_from(ALLOWED_DEEP_LINK_PATHS))
    return build_link(draw(query_params()), path=path)


@st.composite
def wrong_case_host_link(draw):
    """Deep link whose host differs from the allowed host only by case."""
    host = draw(case_variants(DEEP_LINK_HOST).filter(lambda h: h != DEEP_LINK_HOST))
    return build_link(draw(query_params()), host=host)


@st.composite
def mixed_case_scheme_link(draw):
    """Otherwise valid deep link with the scheme in arbitrary case."""
    scheme = draw(case_variants(DEEP_LINK_SCHEME))
    path = draw(st.sampled_from(ALLOWED_DEEP_LINK_PATHS))
    return build_link(draw(query_params()), path=path, scheme=scheme)


@st.composite
def disallowed_path_link(draw):
    """Deep link with a path outside the allowlist."""
    path = draw(
        st.text(alphabet="abcdefghijklmnopqrstuvwxyz0123456789-_/.", max_size=30)
        .map(lambda p: "/" + p)
        .filter(lambda p: p not in ALLOWED_DEEP_LINK_PATHS)
    )
    return build_link(draw(query_params()), path=path)


@st.composite
def unknown_param_link(draw):
    """Deep link carrying one parameter name outside the allowlist."""
    params = draw(query_params())
    name = draw(
        st.text(alphabet="abcdefghijklmnopqrstuvwxyz_", min_size=1, max_size=20).filter(
            lambda n: n not in ALLOWED_QUERY_PARAMS
        )
    )
    position = draw(st.integers(min_value=0, max_value=len(params)))
    params.insert(position, (name, draw(token_values())))
    return build_link(params)


@st.composite
def duplicate_param_link(draw):
    """Deep link with one allowlisted parameter name repeated."""
    params = draw(query_params(min_size=1))
    name, _ = draw(st.sampled_from(params))
    params.append((name, draw(token_values())))
    return build_link(params)


@st.composite
def fragment_link(draw):
    """Otherwise valid deep link with a non-empty fragment."""
    fragment = draw(st.text(alphabet=URL_SAFE_ALPHABET + "=&", min_size=1, max_size=40))
    return f"{draw(valid_deep_link())}#{fragment}"


@st.composite
def over_length_url(draw):
    """String longer than MAX_URL_LENGTH, starting with arbitrary text."""
    prefix = draw(st.text(max_size=50))
    extra = draw(st.integers(min_value=1, max_value=500))
    return prefix + "x" * (MAX_URL_LENGTH - len(prefix) + extra)
