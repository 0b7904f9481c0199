"""Authentication and premium subscription backend for the expense tracker."""
