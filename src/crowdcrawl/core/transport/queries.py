"""GraphQL documents for the project listing and project detail calls."""

FETCH_PROJECTS_OPERATION = "FetchProjects"
FETCH_PROJECT_OPERATION = "FetchProject"

FETCH_PROJECTS_QUERY = """
query FetchProjects($first: Int = 15, $cursor: String, $sort: ProjectSort) {
  projects(first: $first, after: $cursor, sort: $sort) {
    edges {
      cursor
      node {
        __typename
        backersCount
        description
        id
        pid
        name
        slug
        isLaunched
        category { name parentCategory { name } }
        country { code name }
        createdAt
        creator { name id }
        deadlineAt
        goal { amount currency symbol }
        pledged { amount currency symbol }
        percentFunded
        launchedAt
        location { displayableName }
        isProjectWeLove
        state
      }
    }
    pageInfo { hasPreviousPage hasNextPage startCursor endCursor }
    totalCount
  }
}
"""

FETCH_PROJECT_QUERY = """
query FetchProject($slug: String!) {
  project(slug: $slug) {
    __typename
    backersCount
    description
    minPledge
    isLaunched
    category { name parentCategory { name } }
    commentsCount
    country { code name }
    createdAt
    creator { name backingsCount launchedProjects { totalCount } }
    currency
    deadlineAt
    goal { amount currency symbol }
    id
    launchedAt
    location { displayableName }
    name
    pledged { amount currency symbol }
    rewards {
      nodes {
        id
        name
        backersCount
        description
        estimatedDeliveryOn
        available
        amount { amount currency symbol }
        shippingPreference
        remainingQuantity
        limit
        limitPerBacker
        startsAt
        endsAt
        simpleShippingRulesExpanded { locationName }
      }
    }
    risks
    story
    slug
    isProjectWeLove
    state
    stateChangedAt
    posts { totalCount }
    video { videoSources { high { src } } }
    faqs { nodes { id } }
    environmentalCommitments { commitmentCategory description }
  }
}
"""
