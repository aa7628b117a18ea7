"""Academy domain modules: progression, labs, quizzes, rankings and rewards."""
