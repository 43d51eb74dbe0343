# retail_pos test suite
#
# Run with: python -m pytest
