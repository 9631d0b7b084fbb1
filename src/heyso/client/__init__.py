"""Transport-level pieces of the Heyso client: storage, session and HTTP."""
