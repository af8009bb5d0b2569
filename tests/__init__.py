# Tests for QPU Runtime
#
# Test organization mirrors source structure:
#   - test_runtime/: bookkeeping, dispatch, resolution and reference backends
#
# Running tests:
#   pytest tests/
#   pytest tests/test_runtime/ -v
#   pytest tests/ -k "region"
