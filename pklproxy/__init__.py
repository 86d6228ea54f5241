"""A local proxy serving private GitHub release assets through a GitHub App."""
