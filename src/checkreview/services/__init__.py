"""Application services — review submission, retry, cleanup, deletion."""
