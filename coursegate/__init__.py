"""coursegate: course permissions and timed quiz attempts."""
