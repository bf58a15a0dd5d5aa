"""HTTP route groups mounted by `quizweb.main` under `/api`."""
