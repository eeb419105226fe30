from issuer_core.errors import IssuerError, Outcome, PendingError, PermanentError, classify, find, unwrap


class UpstreamError(Exception):
    pass


def test_plain_errors_are_transient():
    assert classify(None) is Outcome.SUCCESS
    assert classify(UpstreamError("503")) is Outcome.TRANSIENT


def test_markers():
    assert classify(PermanentError("bad")) is Outcome.PERMANENT
    assert classify(PendingError("later")) is Outcome.PENDING
    assert classify(IssuerError(UpstreamError("ca down"))) is Outcome.ISSUER


def test_wrapped_in_cause_chain():
    try:
        try:
            raise PermanentError("invalid token")
        except PermanentError as inner:
            raise RuntimeError("calling CA") from inner
    except RuntimeError as e:
        assert classify(e) is Outcome.PERMANENT


def test_outermost_marker_wins():
    err = PendingError(PermanentError("x"))
    assert classify(err) is Outcome.PENDING


def test_issuer_error_is_opaque():
    err = IssuerError(PermanentError("revoked CA"))
    assert classify(err) is Outcome.ISSUER
    # the inner error is what the trust anchor sees
    assert classify(find(err, IssuerError).err) is Outcome.PERMANENT


def test_string_argument_and_str():
    err = PermanentError("nope")
    assert str(err) == "nope"
    assert isinstance(err.err, Exception)
    assert [type(e) for e in unwrap(err)] == [PermanentError, Exception]


def test_find_missing():
    assert find(UpstreamError("x"), IssuerError) is None
