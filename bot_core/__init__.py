"""Turn pipeline for the Teams bot gateway: state, dispatch and error recovery."""
