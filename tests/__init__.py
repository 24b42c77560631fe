"""
questledger Test Suite
======================

Test Organization
-----------------
- tests/unit/          : Fast tests of pure domain logic and helpers, mocks only
- tests/integration/   : Services against a real SQLite database (aiosqlite)

Testing Philosophy
------------------
- Concurrency tests race real transactions with asyncio.gather
- Use pytest markers to categorize and selectively run tests
- Follow AAA pattern: Arrange, Act, Assert
"""
